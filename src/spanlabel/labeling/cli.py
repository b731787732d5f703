"""Label spans in a text file from the command line.

Environment Variables:
    ANTHROPIC_API_KEY: API key for the default model invoker
    SPAN_MODEL: Model name or alias (default: haiku)
    SPAN_ENABLE_REPAIR / SPAN_DEFENSIVE_META / SPAN_CACHE_*: see
        spanlabel.labeling.config and spanlabel.shared.cache.factory

Usage:
    python -m spanlabel.labeling.cli --input prompt.txt --max-spans 30 --repair
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from spanlabel.labeling.config import LabelingSettings
from spanlabel.labeling.errors import SpanLabelingError
from spanlabel.labeling.orchestrator import RetryOrchestrator
from spanlabel.shared.cache import create_result_cache
from spanlabel.shared.llm.anthropic_provider import AnthropicInvoker
from spanlabel.shared.llm.protocol import ModelInvoker
from spanlabel.shared.logger import RunLogger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Label spans of a text with an LLM and reconcile them onto the source.",
    )
    parser.add_argument("--input", required=True, type=Path)
    parser.add_argument("--output", type=Path, default=None,
                        help="Write response JSON here instead of stdout")
    parser.add_argument("--max-spans", type=int, default=None)
    parser.add_argument("--min-confidence", type=float, default=None)
    parser.add_argument("--word-limit", type=int, default=None,
                        help="Non-technical span word limit")
    parser.add_argument("--allow-overlap", action="store_true")
    parser.add_argument("--repair", action="store_true",
                        help="Issue a repair model call when strict validation fails")
    parser.add_argument("--template-version", type=str, default=None)
    parser.add_argument("--model", type=str, default=None)
    parser.add_argument("--log-file", type=Path, default=None,
                        help="INFO+ log file")
    parser.add_argument("--trace-file", type=Path, default=None,
                        help="TRACE+ log file (every line)")
    return parser


def main(argv: list[str] | None = None, invoker: ModelInvoker | None = None) -> int:
    args = build_parser().parse_args(argv)

    if not args.input.is_file():
        print(f"Error: Input file does not exist: {args.input}", file=sys.stderr)
        return 1

    log = RunLogger(log_file=args.log_file, trace_file=args.trace_file, console=args.output is not None)
    log.install_stdlib_bridge(root_logger="spanlabel", level=logging.DEBUG)

    settings = LabelingSettings.from_env()
    if args.repair:
        settings.enable_repair = True

    policy: dict[str, object] = {"allowOverlap": args.allow_overlap}
    if args.word_limit is not None:
        policy["nonTechnicalWordLimit"] = args.word_limit

    request = {
        "text": args.input.read_text(encoding="utf-8"),
        "maxSpans": args.max_spans,
        "minConfidence": args.min_confidence,
        "policy": policy,
        "templateVersion": args.template_version,
    }

    log.section("Span labeling")
    log.info(f"Input:  {args.input}")
    log.info(f"Repair: {settings.enable_repair}")

    try:
        if invoker is None:
            invoker = AnthropicInvoker(model=args.model)
        orchestrator = RetryOrchestrator(invoker, settings=settings, cache=create_result_cache())
        with log.timer("label_spans"):
            result = asyncio.run(orchestrator.run(request))
    except (SpanLabelingError, ValueError) as e:
        log.error(str(e))
        print(str(e), file=sys.stderr)
        log.close()
        return 1

    log.metric("spans", len(result.spans))
    log.trace(f"states: {[s.value for s in orchestrator.trail]}")
    for span in result.spans:
        log.trace(f"  [{span.start}:{span.end}] {span.role:<12} {span.confidence:.2f} {span.text!r}")

    payload = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(payload + "\n", encoding="utf-8")
        log.info(f"Output: {args.output}")
    else:
        print(payload)

    log.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
