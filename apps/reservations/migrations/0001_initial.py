import uuid
from decimal import Decimal

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Reservation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('booking_code', models.CharField(editable=False, max_length=16, unique=True)),
                ('studio_id', models.UUIDField(db_index=True)),
                ('customer_id', models.UUIDField(db_index=True)),
                ('package_id', models.UUIDField()),
                ('reservation_date', models.DateField(blank=True, null=True)),
                ('start_time', models.TimeField(blank=True, null=True)),
                ('end_time', models.TimeField(blank=True, null=True)),
                ('total_amount', models.DecimalField(decimal_places=2, help_text='Fixed when the reservation is created.', max_digits=14)),
                ('dp_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Deposit that secures the reservation.', max_digits=14)),
                ('status', models.CharField(
                    choices=[
                        ('pending', 'Pending'),
                        ('confirmed', 'Confirmed'),
                        ('cancelled', 'Cancelled'),
                        ('completed', 'Completed'),
                    ],
                    default='pending',
                    max_length=16,
                )),
                ('payment_status', models.CharField(
                    choices=[
                        ('pending', 'Unpaid'),
                        ('partial', 'Partially paid'),
                        ('paid', 'Paid'),
                        ('failed', 'Payment failed'),
                        ('refunded', 'Refunded'),
                    ],
                    default='pending',
                    max_length=16,
                )),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.CharField(blank=True, max_length=255)),
                ('version', models.PositiveIntegerField(default=0, editable=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Reservation',
                'verbose_name_plural': 'Reservations',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'payment_status'], name='reservation_state_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(total_amount__gte=0),
                        name='reservation_total_non_negative',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(dp_amount__gte=0) & models.Q(dp_amount__lte=models.F('total_amount')),
                        name='reservation_deposit_within_total',
                    ),
                    models.CheckConstraint(
                        condition=~models.Q(payment_status='paid') | models.Q(status__in=['confirmed', 'completed']),
                        name='reservation_paid_is_confirmed',
                    ),
                ],
            },
        ),
    ]
