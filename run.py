# run.py

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "sitemetrics.main:app",
        host="0.0.0.0",
        port=5000,
        reload=False,
        workers=1,  # Single worker - required for in-memory metrics
    )
