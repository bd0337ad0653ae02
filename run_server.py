import os

import uvicorn

if __name__ == "__main__":
    # sessions are read from CHRONICLE_STORAGE_DIR when set, else memory
    port = int(os.environ.get("CHRONICLE_PORT", "8000"))

    print("Starting Chronicle read API...")
    print(f"Docs available at: http://localhost:{port}/docs")

    uvicorn.run(
        "chronicle.api.server:app",
        host=os.environ.get("CHRONICLE_HOST", "127.0.0.1"),
        port=port,
        reload=False,
    )
