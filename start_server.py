#start_server.py
import uvicorn

from config import SERVER_CONFIG, LOG_LEVEL

if __name__ == "__main__":
    # Single worker: tracking state and registered tokens live in this process
    uvicorn.run(
        "main:app",
        host=SERVER_CONFIG['host'],
        port=SERVER_CONFIG['port'],
        workers=1,
        log_level=LOG_LEVEL.lower(),
    )
