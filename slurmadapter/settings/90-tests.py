import sys
import os

TESTING = sys.argv[1:2] == ['test'] or 'pytest' in sys.modules

TESTS_USER = 'user01'
TESTS_ADMIN = 'admin'

if TESTING:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': os.path.join(BASE_DIR, 'test-default.sqlite3'),
        },
        'slurm': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': os.path.join(BASE_DIR, 'test-slurm.sqlite3'),
        },
    }
    SLURM_CREATE_TABLES = True
    SLURM_DB_ENCODING = 'utf8mb4'
    CLUSTER_NAME = 'testcluster'
    SLURM_PARTITION_DESCRIPTIONS = {
        'compute': 'General purpose CPU nodes',
    }
    SLURM_RUN_AS_USER = ['sudo', '-n', '-u', '{user}', '--']
    for logger in LOGGING['loggers'].values():
        logger['level'] = 'CRITICAL'
