import json, os, urllib.request
from .personas import PERSONAS, split

URL = os.getenv("REPLAYUX_INGEST_URL", "http://127.0.0.1:8123/ingest")
API_KEY = os.getenv("REPLAYUX_API_KEY", "")


def post_batch(batch):
    data = json.dumps(batch).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if API_KEY:
        headers["x-api-key"] = API_KEY
    req = urllib.request.Request(URL, data=data, headers=headers)
    with urllib.request.urlopen(req) as r:
        r.read()


def main():
    n = 0
    for persona in PERSONAS:
        session = persona()
        for batch in split(session):
            post_batch(batch)
            n += 1
    print(f"Seeded {len(PERSONAS)} sessions in {n} batches.")


if __name__ == "__main__":
    main()
