import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "sos_backend.settings.base")

app = Celery("sos_backend")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
