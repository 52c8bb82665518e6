#!/usr/bin/env python3
"""Detect typed sections in a free-form prompt and render them as markup.

Usage:
    # Markup for a prompt file
    python3 scripts/structure_prompt.py prompt.txt

    # Raw analysis / extraction as JSON, reading stdin
    cat prompt.txt | python3 scripts/structure_prompt.py - --mode analyze
    python3 scripts/structure_prompt.py prompt.txt --mode extract --min-confidence 50

    # Built-in template, minified
    python3 scripts/structure_prompt.py --template code-reviewer --minified

Structured output goes to stdout; human messages go to stderr.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from promptmark.analyzer import SectionFeedback
from promptmark.config import PipelineConfig, load_config
from promptmark.extractor import ExtractionOptions, extraction_result_to_dict
from promptmark.formatter import FormattingOptions
from promptmark.generator import (
    BUILTIN_TEMPLATES,
    GenerationOptions,
    GenerationResult,
    generation_result_to_dict,
    get_template,
)
from promptmark.io_utils import dumps_json, save_json
from promptmark.pipeline import PromptPipeline, pipeline_stats_to_dict
from promptmark.rules import DEFAULT_RULES, load_rule_table, rule_count
from promptmark.types import analysis_result_to_dict, is_category, section_to_dict

log = logging.getLogger("structure_prompt")


def dump_json(obj: Any, out: Path | None = None) -> None:
    if out is not None:
        save_json(obj, out)
        print(f"Wrote {out}", file=sys.stderr)
        return
    sys.stdout.buffer.write(dumps_json(obj))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect prompt sections and render them as structured markup."
    )
    parser.add_argument(
        "input",
        nargs="?",
        default="-",
        help="Prompt text file, or '-' for stdin (default).",
    )
    parser.add_argument(
        "--mode",
        choices=("analyze", "extract", "generate"),
        default="generate",
        help="analyze: raw detected sections; extract: cleaned sections; generate: markup.",
    )
    parser.add_argument(
        "--min-confidence", type=int, default=30,
        help="Extraction threshold for kept sections (0-100).",
    )
    parser.add_argument(
        "--no-overlaps", action="store_true",
        help="Skip overlap resolution during extraction.",
    )
    parser.add_argument(
        "--no-expand", action="store_true",
        help="Do not grow sections to sentence edges.",
    )
    parser.add_argument(
        "--max-per-type", type=int, default=3,
        help="Maximum sections kept per category.",
    )
    parser.add_argument("--root-tag", default="poml", help="Root element of generated markup.")
    parser.add_argument("--minified", action="store_true", help="Single-line markup.")
    parser.add_argument(
        "--xml-declaration", action="store_true",
        help="Prefix indented markup with an XML declaration.",
    )
    parser.add_argument(
        "--include-metadata", action="store_true",
        help="Add generated-at / section-count / average-confidence to the root.",
    )
    parser.add_argument(
        "--include-confidence", action="store_true",
        help="Add a confidence attribute to each section element.",
    )
    parser.add_argument(
        "--template", default=None,
        help="Render a built-in template instead of reading input.",
    )
    parser.add_argument(
        "--list-templates", action="store_true",
        help="List built-in templates and exit.",
    )
    parser.add_argument(
        "--correct", nargs=2, metavar=("SECTION_ID", "CATEGORY"), default=None,
        help="Re-analyze one section with a user-corrected category (analyze mode).",
    )
    parser.add_argument("--config", type=Path, default=None, help="PipelineConfig JSON file.")
    parser.add_argument("--rules", type=Path, default=None, help="Extra rule-table JSON file.")
    parser.add_argument(
        "--replace-rules", action="store_true",
        help="Use --rules instead of, not on top of, the built-in rules.",
    )
    parser.add_argument("--json", action="store_true", help="Emit generate results as JSON.")
    parser.add_argument("--out", type=Path, default=None, help="Write output (JSON or markup) to this file instead of stdout.")
    parser.add_argument("--stats", action="store_true", help="Include pipeline statistics.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.exists():
        print(f"Error: input not found: {path}", file=sys.stderr)
        sys.exit(1)
    return path.read_text(encoding="utf-8")


def _build_pipeline(args: argparse.Namespace) -> PromptPipeline:
    config = PipelineConfig()
    rules = DEFAULT_RULES
    try:
        if args.config is not None:
            config = load_config(args.config)
        if args.rules is not None:
            rules = load_rule_table(args.rules, replace_defaults=args.replace_rules)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    log.debug("pipeline config: %s; %d rules", config.as_dict(), rule_count(rules))
    formatting = FormattingOptions(include_xml_declaration=args.xml_declaration)
    return PromptPipeline(config, rules, formatting)


def _emit_generation(
    result: GenerationResult,
    pipeline: PromptPipeline,
    args: argparse.Namespace,
) -> None:
    for warning in result.metadata.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if args.json:
        payload = generation_result_to_dict(result)
        if args.stats:
            payload["stats"] = pipeline_stats_to_dict(pipeline.stats())
        dump_json(payload, args.out)
        return
    if args.out is not None:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(result.markup + "\n", encoding="utf-8")
        print(f"Wrote {args.out}", file=sys.stderr)
    else:
        sys.stdout.write(result.markup)
        sys.stdout.write("\n")
    if args.stats:
        sys.stderr.buffer.write(dumps_json(pipeline_stats_to_dict(pipeline.stats()), pretty=False))
        sys.stderr.buffer.write(b"\n")


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if args.list_templates:
        dump_json([
            {"id": t.id, "name": t.name, "description": t.description,
             "entries": len(t.structure)}
            for t in BUILTIN_TEMPLATES
        ])
        return

    pipeline = _build_pipeline(args)
    generation = GenerationOptions(
        root_tag=args.root_tag,
        include_metadata=args.include_metadata,
        include_confidence=args.include_confidence,
        minified=args.minified,
        formatting=pipeline.formatter.options,
    )

    if args.template is not None:
        template = get_template(args.template)
        if template is None:
            known = ", ".join(t.id for t in BUILTIN_TEMPLATES)
            print(f"Error: unknown template {args.template!r} (known: {known})", file=sys.stderr)
            sys.exit(1)
        _emit_generation(pipeline.generate_from_template(template, generation), pipeline, args)
        return

    text = _read_input(args.input)
    extraction = ExtractionOptions(
        min_confidence_threshold=args.min_confidence,
        resolve_overlaps=not args.no_overlaps,
        preserve_context=not args.no_expand,
        max_sections_per_type=args.max_per_type,
    )

    if args.mode == "analyze":
        analysis = pipeline.analyze(text)
        payload: dict[str, Any] = analysis_result_to_dict(analysis)
        if args.correct is not None:
            target_id, category = args.correct
            target = next((s for s in analysis.sections if s.id == target_id), None)
            if target is None or not is_category(category):
                print(f"Error: cannot correct {target_id!r} to {category!r}", file=sys.stderr)
                sys.exit(1)
            corrected = pipeline.reanalyze_section(
                target, text, SectionFeedback(corrected_category=category, was_correct=False),  # type: ignore[arg-type]
            )
            payload["corrected"] = section_to_dict(corrected)
        if args.stats:
            payload["stats"] = pipeline_stats_to_dict(pipeline.stats())
        print(
            f"{len(analysis.sections)} sections, confidence {analysis.confidence}",
            file=sys.stderr,
        )
        dump_json(payload, args.out)
        return

    extracted = pipeline.extract(text, extraction)
    if args.mode == "extract":
        payload = extraction_result_to_dict(extracted)
        if args.stats:
            payload["stats"] = pipeline_stats_to_dict(pipeline.stats())
        print(
            f"{len(extracted.sections)} sections kept, "
            f"{extracted.metadata.overlaps_resolved} overlaps resolved",
            file=sys.stderr,
        )
        dump_json(payload, args.out)
        return

    _emit_generation(pipeline.generate(extracted.sections, generation), pipeline, args)


if __name__ == "__main__":
    main()
