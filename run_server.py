import uvicorn

from smart_parking.config import settings
from smart_parking.server import app

if __name__ == '__main__':
    uvicorn.run(app, host='127.0.0.1', port=8000, log_level=settings.LOG_LEVEL.lower())
