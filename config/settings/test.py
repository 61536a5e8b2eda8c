"""Test settings.

File-backed SQLite, eager Celery and fixed payment configuration so
that tests do not depend on the environment.

SQLite transactions start with BEGIN IMMEDIATE, which takes the
database write lock up front. Concurrent units of work are therefore
serialized the same way row locks serialize them on PostgreSQL, and
the threaded tests exercise real contention. Set
DB_ENGINE=django.db.backends.postgresql (plus DB_NAME, DB_USER, ...)
to run the suite against PostgreSQL instead.
"""

import os
from decimal import Decimal

from .base import *  # noqa: F401,F403

DEBUG = False

if 'postgresql' not in os.environ.get('DB_ENGINE', ''):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'test.sqlite3',  # noqa: F405
            'OPTIONS': {
                'transaction_mode': 'IMMEDIATE',
                'timeout': 20,
            },
            'TEST': {
                'NAME': BASE_DIR / 'test_studio_payments.sqlite3',  # noqa: F405
            },
        }
    }

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

CUSTOMER_PAYS_FEES = False
FEE_ROUNDING_QUANTUM = Decimal('1')
FEE_PERCENTAGE_DECIMALS = 2
RESERVATION_CONFIRM_ON_DEPOSIT = True
RECONCILIATION_LOCK_TIMEOUT_MS = 2000

XENDIT_SECRET_KEY = 'xnd_test_secret'
XENDIT_WEBHOOK_SECRET = 'test-callback-token'
XENDIT_WEBHOOK_ENABLED = True
SITE_URL = 'https://studio.test'

LOGGING['root']['level'] = 'CRITICAL'  # noqa: F405
LOGGING['handlers']['console']['level'] = 'CRITICAL'  # noqa: F405
