import os

# Behind a reverse proxy on the same host; the proxy terminates TLS
bind = os.getenv('GUNICORN_BIND', "127.0.0.1:8010")
forwarded_allow_ips = os.getenv('FORWARDED_ALLOW_IPS', '127.0.0.1')

# POST /api/billing/process-scheduled runs the whole reconciliation inside
# the request, so workers stay few and the timeout covers a full run
# (BILLING_RUN_LOCK_SECONDS defaults to 1800).
workers = int(os.getenv('GUNICORN_WORKERS', '3'))
worker_class = "sync"
timeout = int(os.getenv('GUNICORN_TIMEOUT', '1800'))
# Let an in-flight run finish its current record and release the run lock
graceful_timeout = int(os.getenv('GUNICORN_GRACEFUL_TIMEOUT', '120'))
keepalive = 2

# No max_requests: a recycled worker would abort a run mid-batch
preload_app = True

proc_name = 'telebill-api'

log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

logconfig_dict = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'billing': {
            'format': '%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s',
        }
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'billing',
            'stream': 'ext://sys.stdout'
        }
    },
    'root': {
        'level': log_level,
        'handlers': ['console']
    },
    'loggers': {
        'gunicorn.error': {
            'level': log_level,
            'handlers': ['console'],
            'propagate': False,
        },
        # Health checks hit every few seconds; keep access lines out of INFO
        'gunicorn.access': {
            'level': 'WARNING',
            'handlers': ['console'],
            'propagate': False,
        },
        'gateway': {
            'level': log_level,
        },
        'telebill': {
            'level': log_level,
        }
    }
}

raw_env = [
    'FLASK_ENV=production',
]

wsgi_app = 'wsgi:app'
