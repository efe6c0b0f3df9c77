import structlog
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = structlog.get_logger(__name__)


def healthcheck(request):
    """Liveness probe: reports whether the database answers."""
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        db_ok = True
    except DatabaseError as e:
        logger.error("healthcheck_database_unavailable", error=str(e))
        db_ok = False
    status = 200 if db_ok else 503
    return JsonResponse({"status": "ok" if db_ok else "degraded", "database": db_ok}, status=status)
