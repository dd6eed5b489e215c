from __future__ import annotations

import argparse
import base64
import os
import pathlib
import sys
import time

import httpx

# 1x1 pixel JPEG
TEST_IMAGE_DATA = (
    "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAYEBQYFBAYGBQYHBwYIChAKCgkJChQODwwQFxQYGBcUF"
    "hYaHSUfGhsjHBYWICwgIyYnKSopGR8tMC0oMCUoKSj/2wBDAQcHBwoIChMKChMoGhYaKCgoKCgoKCgoKCgoKCgoKCgoKCgoKCgoK"
    "CgoKCgoKCgoKCgoKCgoKCgoKCgoKCgoKCj/wAARCAABAAEDASIAAhEBAxEB/8QAFQABAQAAAAAAAAAAAAAAAAAAAAv/xAAUEAEAA"
    "AAAAAAAAAAAAAAAAAAA/8QAFQEBAQAAAAAAAAAAAAAAAAAAAAX/xAAUEQEAAAAAAAAAAAAAAAAAAAAA/9oADAMBAAIRAxEAPwCdA"
    "BmX/9k="
)


def _image_data(path: str | None) -> str:
    if not path:
        return TEST_IMAGE_DATA
    p = pathlib.Path(path)
    raw = p.read_bytes()
    mime = "image/png" if p.suffix.lower() == ".png" else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


def cmd_upload(args: argparse.Namespace) -> int:
    url = args.base_url.rstrip("/") + "/api/upload"
    body = {"filename": args.filename, "image": _image_data(args.image)}
    with httpx.Client(timeout=httpx.Timeout(connect=5.0, read=90.0, write=30.0, pool=5.0)) as client:
        r = client.post(url, json=body)

    try:
        data = r.json()
    except ValueError:
        print(f"upload: response not JSON status={r.status_code} body={r.text[:500]}")
        return 1

    if r.status_code == 200 and data.get("success"):
        print(f"upload: ok url={data.get('url')} file_id={data.get('fileId')}")
        return 0
    print(f"upload: failed status={r.status_code} error={data.get('error')} details={data.get('details')}")
    return 1


def cmd_rate_limit(args: argparse.Namespace) -> int:
    if args.count < 1 or args.count > 200:
        print("rate-limit: --count must be between 1 and 200")
        return 2

    url = args.base_url.rstrip("/") + "/api/upload"
    ok = throttled = errors = 0
    last_remaining: str | None = None

    with httpx.Client(timeout=httpx.Timeout(connect=5.0, read=90.0, write=30.0, pool=5.0)) as client:
        for i in range(1, args.count + 1):
            body = {"filename": f"rate_limit_test_{int(time.time())}_{i}.jpg", "image": TEST_IMAGE_DATA}
            try:
                r = client.post(url, json=body)
            except httpx.HTTPError as e:
                errors += 1
                print(f"{i}/{args.count} network error: {type(e).__name__}: {e}")
                continue

            last_remaining = r.headers.get("x-ratelimit-remaining", last_remaining)
            try:
                data = r.json()
            except ValueError:
                data = {}

            if r.status_code == 429:
                throttled += 1
                print(f"{i}/{args.count} rate limited, reset in {data.get('resetIn')} minutes")
            elif data.get("success"):
                ok += 1
                print(f"{i}/{args.count} ok, remaining={last_remaining}")
            else:
                errors += 1
                print(f"{i}/{args.count} error={data.get('error')}")

            if i < args.count and args.delay > 0:
                time.sleep(args.delay)

    print(f"attempts={args.count} ok={ok} rate_limited={throttled} errors={errors} last_remaining={last_remaining}")
    if throttled == 0 and args.count > int(args.expected_limit):
        print("rate-limit: no request was throttled")
        return 1
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Smoke-check a deployed media relay")
    parser.add_argument(
        "--base-url",
        default=os.environ.get("RELAY_BASE_URL", "http://localhost:8000"),
        help="Service root, e.g. https://relay.example.com",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_upload = sub.add_parser("upload", help="Upload one test image and print the resulting URL")
    p_upload.add_argument("--filename", default="test-image.jpg")
    p_upload.add_argument("--image", default=None, help="Path to a JPEG/PNG file; defaults to a 1x1 JPEG")
    p_upload.set_defaults(func=cmd_upload)

    p_rl = sub.add_parser("rate-limit", help="Fire sequential uploads and report throttling")
    p_rl.add_argument("--count", type=int, default=55)
    p_rl.add_argument("--delay", type=float, default=0.1, help="Seconds between requests")
    p_rl.add_argument("--expected-limit", type=int, default=50)
    p_rl.set_defaults(func=cmd_rate_limit)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
