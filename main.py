# main.py
"""
Entry point.
  uvicorn main:app --host 0.0.0.0 --port 8080
"""
import logging, sys
from gateway.api import app  # noqa
from gateway.config import settings

root = logging.getLogger()
if not root.handlers:
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"))
    root.addHandler(h)
    root.setLevel(settings.LOG_LEVEL.upper())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=False)
