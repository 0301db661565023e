# Generated manually for payments app

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('needs', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(Decimal('0.01'))])),
                ('currency', models.CharField(max_length=3)),
                ('status', models.CharField(choices=[('initialized', 'Initialized'), ('pending_three_d_secure', 'Awaiting 3-D Secure'), ('verifying', 'Verifying'), ('succeeded', 'Succeeded'), ('failed', 'Failed')], db_index=True, default='initialized', max_length=30)),
                ('three_d_secure_url', models.URLField(blank=True, max_length=1000)),
                ('gateway_reference', models.CharField(blank=True, max_length=128)),
                ('status_token', models.CharField(blank=True, max_length=255)),
                ('idempotency_key', models.CharField(blank=True, default='', max_length=64)),
                ('failure_code', models.CharField(blank=True, max_length=64)),
                ('failure_reason', models.CharField(blank=True, max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('verification_started_at', models.DateTimeField(blank=True, null=True)),
                ('finalized_at', models.DateTimeField(blank=True, null=True)),
                ('offer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='needs.offer')),
                ('payer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'payments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'updated_at'], name='payments_status_updated_idx'),
                    models.Index(fields=['offer', 'status'], name='payments_offer_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'failed'), _negated=True), fields=('offer',), name='unique_open_payment_per_offer'),
                    models.UniqueConstraint(condition=models.Q(('idempotency_key', ''), _negated=True), fields=('offer', 'idempotency_key'), name='unique_payment_idempotency_key'),
                ],
            },
        ),
    ]
