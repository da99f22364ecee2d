import os

import uvicorn


def main():
    uvicorn.run(
        "modelready.app:app",
        host=os.getenv("MODELREADY_HOST", "127.0.0.1"),
        port=int(os.getenv("MODELREADY_PORT", "8080")),
    )


if __name__ == "__main__":
    main()
