"""Gunicorn production configuration.

Run from the repository root: gunicorn -c gunicorn.conf.py
"""
import multiprocessing
import os

wsgi_app = "church_approvals.main:app"
pythonpath = "backend"

bind = os.environ.get("BIND", "0.0.0.0:8000")
# Approval handlers block on the sync DB session, so size by cores.
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")
