from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("edc", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="fielddefinition",
            name="calculation",
            field=models.TextField(blank=True),
        ),
    ]
