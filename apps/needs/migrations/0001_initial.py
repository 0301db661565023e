# Generated manually for needs app

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MaxValueValidator, MinLengthValidator, MinValueValidator
from django.db import migrations, models
import django.db.models.deletion

import apps.needs.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100, unique=True)),
                ('slug', models.SlugField(max_length=100, unique=True)),
                ('description', models.CharField(blank=True, max_length=500)),
                ('is_active', models.BooleanField(default=True)),
                ('sort_order', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='subcategories', to='needs.category')),
            ],
            options={
                'db_table': 'categories',
                'verbose_name_plural': 'categories',
                'ordering': ['sort_order', 'name'],
            },
        ),
        migrations.CreateModel(
            name='Need',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=200, validators=[MinLengthValidator(5)])),
                ('description', models.TextField(max_length=2000, validators=[MinLengthValidator(10)])),
                ('min_budget', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True, validators=[MinValueValidator(Decimal('0'))])),
                ('max_budget', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True, validators=[MinValueValidator(Decimal('0'))])),
                ('currency', models.CharField(default=apps.needs.models.default_currency, max_length=3)),
                ('address', models.CharField(blank=True, max_length=500)),
                ('urgency', models.CharField(choices=[('flexible', 'Flexible'), ('normal', 'Normal'), ('urgent', 'Urgent')], default='normal', max_length=20)),
                ('status', models.CharField(choices=[('active', 'Active'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('expired', 'Expired')], db_index=True, default='active', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('payment_received_at', models.DateTimeField(blank=True, null=True)),
                ('closed_at', models.DateTimeField(blank=True, null=True)),
                ('category', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='needs', to='needs.category')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='needs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'needs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'expires_at'], name='needs_status_expiry_idx'),
                    models.Index(fields=['owner', 'status'], name='needs_owner_status_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('min_budget__isnull', True), ('max_budget__isnull', True), ('min_budget__lt', models.F('max_budget')), _connector='OR'),
                        name='need_min_budget_below_max',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Offer',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('price', models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(Decimal('0.01'))])),
                ('currency', models.CharField(default=apps.needs.models.default_currency, max_length=3)),
                ('description', models.TextField(max_length=2000, validators=[MinLengthValidator(10)])),
                ('delivery_days', models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(365)])),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('rejected', 'Rejected'), ('withdrawn', 'Withdrawn')], db_index=True, default='pending', max_length=20)),
                ('idempotency_key', models.CharField(blank=True, default='', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('need', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='offers', to='needs.need')),
                ('provider', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'offers',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['need', 'status'], name='offers_need_status_idx'),
                    models.Index(fields=['provider', 'status'], name='offers_provider_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'accepted')), fields=('need',), name='unique_accepted_offer_per_need'),
                    models.UniqueConstraint(condition=models.Q(('idempotency_key', ''), _negated=True), fields=('provider', 'idempotency_key'), name='unique_offer_idempotency_key'),
                    models.CheckConstraint(condition=models.Q(('price__gt', 0)), name='offer_price_positive'),
                    models.CheckConstraint(condition=models.Q(('delivery_days__gte', 1), ('delivery_days__lte', 365)), name='offer_delivery_days_range'),
                ],
            },
        ),
    ]
