from pathlib import Path
from datetime import datetime, timezone

from ..heatmap import taps_frame
from ..store import SessionStore, connect

REPO_ROOT = Path(__file__).resolve().parents[2]
OUTDIR = REPO_ROOT / "data" / "parquet"


def export(store: SessionStore, outdir: Path = OUTDIR):
    """Flatten every stored session's taps into one parquet table. Returns the path, or None if there are no taps."""
    df = taps_frame(store.all())
    if df.empty:
        return None
    outdir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    path = outdir / f"taps_{stamp}.parquet"
    df.to_parquet(path, engine="pyarrow", index=False)
    return path


def main():
    store = SessionStore(connect())
    path = export(store)
    if path is None:
        print("[export] no taps stored, nothing to write.")
        return
    print(f"[export] wrote taps → {path}")


if __name__ == "__main__":
    main()
