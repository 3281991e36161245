#!/usr/bin/env python3
import os, sys, json, time, argparse, redis
from pathlib import Path

ROOT = Path(__file__).resolve().parent
DEFAULT_SNAPSHOT = ROOT / "services" / "catalog_sync" / "data" / "catalog_snapshot.json"
CATALOG_KEY = "colortest:doc:catalog"
CHANGES_CHANNEL = "colortest:changes"

def read_json_file(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        sys.exit(f"ERROR: file not found: {path}")
    except json.JSONDecodeError as e:
        sys.exit(f"ERROR: invalid JSON in {path}: {e}")

def merge(a: dict, b: dict) -> dict:
    out = dict(a or {})
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = {**out[k], **v}
        else:
            out[k] = v
    return out

def seed_catalog(r: redis.Redis, path: str, force: bool) -> int:
    """Copy the bundled catalog into the document store; returns tests written (0 = skipped)."""
    if not force and r.exists(CATALOG_KEY):
        print(f"{CATALOG_KEY} already present; use --force to overwrite")
        return 0

    doc = read_json_file(path)
    tests = doc.get("testDefinitions") if isinstance(doc, dict) else None
    if not isinstance(tests, list) or not tests:
        sys.exit(f"ERROR: {path} has no testDefinitions")

    pipe = r.pipeline()
    pipe.set(CATALOG_KEY, json.dumps(doc, ensure_ascii=False, separators=(",", ":")))
    pipe.publish(CHANGES_CHANNEL, json.dumps({
        "collection": "catalog",
        "origin": "load_truth",
        "lastUpdated": doc.get("lastUpdated"),
    }))
    pipe.execute()
    return len(tests)

def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Load merged truth into Redis (single key) and optionally seed the catalog.")
    p.add_argument("--redis-url",
                   default=os.getenv("BOOTSTRAP_REDIS_URL", "redis://127.0.0.1:6379"))
    p.add_argument("--truth",   default=os.getenv("TRUTH_FILE"))
    p.add_argument("--secrets", default=os.getenv("TRUTH_SECRETS_FILE"))
    p.add_argument("--key",     default=os.getenv("TRUTH_REDIS_KEY", "truth"))
    p.add_argument("--seed-catalog", nargs="?", const=str(DEFAULT_SNAPSHOT), default=None,
                   metavar="SNAPSHOT", help="write a catalog snapshot to the document store")
    p.add_argument("--document-store-url", default=os.getenv("DOCUMENT_STORE_URL"),
                   help="document store for --seed-catalog (defaults to --redis-url)")
    p.add_argument("--force", action="store_true", help="overwrite an existing catalog document")
    args = p.parse_args(argv)

    if not args.truth and not args.seed_catalog:
        sys.exit("ERROR: nothing to do (set --truth/TRUTH_FILE or --seed-catalog).")

    if args.truth:
        base = read_json_file(args.truth)
        if args.secrets:
            if os.path.exists(args.secrets):
                base = merge(base, read_json_file(args.secrets))
            else:
                sys.exit(f"ERROR: secrets file not found: {args.secrets}")

        r = redis.Redis.from_url(args.redis_url, decode_responses=True)
        pipe = r.pipeline()
        pipe.set(args.key, json.dumps(base, separators=(",", ":")))
        pipe.set("truth:version", str(base.get("version", "")))
        pipe.set("truth:ts", str(int(time.time())))
        pipe.execute()

        # No file paths or contents echoed, just confirmation.
        print(f"Loaded truth into {args.key} at {args.redis_url}")

    if args.seed_catalog:
        store_url = args.document_store_url or args.redis_url
        r = redis.Redis.from_url(store_url, decode_responses=True)
        count = seed_catalog(r, args.seed_catalog, args.force)
        if count:
            print(f"Seeded {count} tests into {CATALOG_KEY} at {store_url}")

    return 0

if __name__ == "__main__":
    raise SystemExit(main())
