import uuid
from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ('reservations', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='PaymentMethod',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('studio_id', models.UUIDField(db_index=True)),
                ('code', models.SlugField(help_text='Identifier sent by clients.', unique=True)),
                ('name', models.CharField(max_length=100)),
                ('type', models.CharField(
                    choices=[
                        ('bank_transfer', 'Bank transfer'),
                        ('cash', 'Cash'),
                        ('e_wallet', 'E-wallet'),
                        ('virtual_account', 'Virtual account'),
                        ('card', 'Card'),
                        ('qris', 'QRIS'),
                    ],
                    max_length=20,
                )),
                ('provider', models.CharField(choices=[('manual', 'Manual'), ('xendit', 'Xendit')], default='manual', max_length=20)),
                ('fee_type', models.CharField(choices=[('percentage', 'Percentage'), ('fixed', 'Fixed')], default='percentage', max_length=12)),
                ('fee_percentage', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=6)),
                ('fee_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('gateway_channel', models.CharField(blank=True, help_text='Gateway payment channel, e.g. QRIS or OVO.', max_length=40)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Payment method',
                'verbose_name_plural': 'Payment methods',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('invoice_amount', models.DecimalField(blank=True, decimal_places=2, help_text='Amount requested when the payment was opened.', max_digits=14, null=True)),
                ('payment_type', models.CharField(
                    choices=[('dp', 'Deposit'), ('full', 'Full payment'), ('remaining', 'Remaining balance')],
                    max_length=12,
                )),
                ('payment_method', models.CharField(blank=True, max_length=50)),
                ('status', models.CharField(
                    choices=[
                        ('pending', 'Awaiting payment'),
                        ('paid', 'Paid'),
                        ('failed', 'Failed'),
                        ('cancelled', 'Cancelled'),
                        ('refunded', 'Refunded'),
                    ],
                    default='pending',
                    max_length=12,
                )),
                ('external_reference', models.CharField(blank=True, max_length=120, null=True, unique=True)),
                ('external_status', models.CharField(blank=True, max_length=40)),
                ('payment_url', models.URLField(blank=True, max_length=500)),
                ('gateway_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('net_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('callback_payload', models.JSONField(blank=True, help_text='Last gateway payload, stored verbatim for audit.', null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('refunded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('reservation', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='payments',
                    to='reservations.reservation',
                )),
            ],
            options={
                'verbose_name': 'Payment',
                'verbose_name_plural': 'Payments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['reservation', 'status'], name='payment_reservation_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(status='pending'),
                        fields=('reservation',),
                        name='payment_one_pending_per_reservation',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount__gt=0),
                        name='payment_amount_positive',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='PaymentTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event', models.CharField(
                    choices=[('webhook', 'Webhook'), ('status_sync', 'Status sync'), ('manual', 'Manual confirmation')],
                    max_length=20,
                )),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('status', models.CharField(blank=True, max_length=40)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('payment', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='transactions',
                    to='finances.payment',
                )),
            ],
            options={
                'verbose_name': 'Payment transaction',
                'verbose_name_plural': 'Payment transactions',
                'ordering': ['-created_at'],
            },
        ),
    ]
