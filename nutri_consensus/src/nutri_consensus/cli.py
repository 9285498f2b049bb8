from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import config
from .engine import AnalysisEngine
from .errors import FallbackExhaustedError
from .models import AnalysisResult
from .signing import KeypairSigner, verify_attestation


def _parse_provider_keys(values: List[str]) -> Dict[str, str]:
    out = {}
    for value in values or []:
        if "=" not in value:
            continue
        provider, key = value.split("=", 1)
        if provider.strip() and key.strip():
            out[provider.strip().lower()] = key.strip()
    return out


async def _run_analysis(image_b64: str, credentials: Dict[str, str], signer: Optional[KeypairSigner]) -> AnalysisResult:
    engine = AnalysisEngine(config.EngineConfig())
    engine.initialize(signer)
    try:
        return await engine.analyze(image_b64, credentials)
    finally:
        await engine.shutdown()


def _cmd_analyze(args: argparse.Namespace) -> int:
    image_b64 = base64.b64encode(Path(args.image).read_bytes()).decode("ascii")
    credentials = _parse_provider_keys(args.provider_key)
    api_key = args.api_key or config.OPENROUTER_API_KEY
    if api_key:
        credentials.setdefault("openrouter", api_key)
    if not credentials:
        print("No credentials: pass --api-key, --provider-key or set OPENROUTER_API_KEY", file=sys.stderr)
        return 2

    signer = None
    if args.ephemeral_signer:
        signer = KeypairSigner.generate()
    elif config.SIGNING_PRIVATE_KEY:
        signer = KeypairSigner.from_secret(config.SIGNING_PRIVATE_KEY)

    try:
        result = asyncio.run(_run_analysis(image_b64, credentials, signer))
    except FallbackExhaustedError as e:
        print(f"Analysis failed: {e.cause} ({e.providers_attempted} provider(s) attempted)", file=sys.stderr)
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    data = json.loads(Path(args.result).read_text())
    result = AnalysisResult.from_dict(data)
    if result.signature is None:
        print("Result carries no signature", file=sys.stderr)
        return 1
    ok = verify_attestation(result, result.signature)
    print("valid" if ok else "INVALID")
    return 0 if ok else 1


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("nutri_consensus.api:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="nutri-consensus")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a meal photo")
    analyze_parser.add_argument("image", help="Path to a JPEG image")
    analyze_parser.add_argument("--api-key", default=None, help="OpenRouter API key")
    analyze_parser.add_argument(
        "--provider-key", action="append", default=[], help="provider=KEY (repeatable)"
    )
    analyze_parser.add_argument(
        "--ephemeral-signer", action="store_true", help="Sign the result with a throwaway key"
    )

    verify_parser = subparsers.add_parser("verify", help="Verify a signed result JSON file")
    verify_parser.add_argument("result", help="Path to a result JSON file")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")

    if args.command == "analyze":
        return _cmd_analyze(args)
    if args.command == "verify":
        return _cmd_verify(args)
    if args.command == "serve":
        return _cmd_serve(args)
    return 1


if __name__ == "__main__":
    sys.exit(main())
