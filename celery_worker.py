# celery_worker.py
# celery -A celery_worker worker -B -Q default,billing --loglevel=info
from telebill.celery_app import create_celery_app

celery = create_celery_app()
