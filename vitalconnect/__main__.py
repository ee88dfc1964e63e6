import uvicorn

from .config import DEBUG, HOST, PORT


def main():
    uvicorn.run("vitalconnect.main:app", host=HOST, port=PORT, reload=DEBUG)


if __name__ == "__main__":
    main()
