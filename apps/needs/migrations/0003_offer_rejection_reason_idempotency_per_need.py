# Generated manually for needs app

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('needs', '0002_seed_categories'),
    ]

    operations = [
        migrations.AddField(
            model_name='offer',
            name='rejection_reason',
            field=models.CharField(blank=True, default='', max_length=500),
        ),
        migrations.RemoveConstraint(
            model_name='offer',
            name='unique_offer_idempotency_key',
        ),
        migrations.AddConstraint(
            model_name='offer',
            constraint=models.UniqueConstraint(condition=models.Q(('idempotency_key', ''), _negated=True), fields=('provider', 'need', 'idempotency_key'), name='unique_offer_idempotency_key'),
        ),
    ]
