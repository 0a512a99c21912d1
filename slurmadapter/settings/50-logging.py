import os

LOG_LEVEL = os.environ.get('SLURMADAPTER_LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        name: {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        } for name in ['slurmadapter', 'slurm', 'jobs', 'accounts', 'cluster']
    },
}
