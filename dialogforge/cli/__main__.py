"""
DialogForge CLI - generate and evaluate dialog nodes from the terminal.

Usage:
    dialogforge models
    dialogforge generate NODE_TYPE --context CONTEXT.json [--tags TAGS.json] [--custom PROMPT] [--json]
    dialogforge evaluate NODE_TYPE TEXT --context CONTEXT.json [--tags TAGS.json] [--json]

CONTEXT.json holds a GenerateContext in the editor's camelCase form
(``current``, ``previous``, ``next``, ``siblingNodes``, ``characterInfo``...).
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from dialogforge.config import load_settings
from dialogforge.protocols import DialogForgeError
from dialogforge.service import DialogService
from dialogforge.tags import TagRegistry
from dialogforge.types import GenerateContext

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def load_context(path: str) -> GenerateContext:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return GenerateContext.from_dict(data)


def build_service(args) -> DialogService:
    settings = load_settings(Path(args.settings) if args.settings else None)
    if args.model:
        settings = settings.merged(model=args.model)
    if args.base_url:
        settings = settings.merged(base_url=args.base_url.rstrip("/"))
    tags = TagRegistry.from_json_file(Path(args.tags)) if getattr(args, "tags", None) else None
    return DialogService(settings, tags=tags)


async def cmd_models(args, service: DialogService) -> int:
    """List models available on the backend."""
    models = await service.list_models()
    if args.json:
        print(json.dumps(models, indent=2))
    elif not models:
        print("No models found (is Ollama running?)")
    else:
        for name in models:
            print(name)
    return 0 if models else 1


async def cmd_generate(args, service: DialogService) -> int:
    """Generate text for one node."""
    ctx = load_context(args.context)
    if args.custom:
        result = await service.generate_with_custom_prompt(args.node_type, ctx, args.custom)
    else:
        result = await service.generate(args.node_type, ctx, force_validation=args.force)

    if args.json:
        payload = {"ok": result.ok, "text": result.text}
        if result.error is not None:
            payload["error"] = {"kind": result.error.kind.value, "message": result.error.message}
        validation = service.get_validation_result(ctx.node_id, result.text or "") if result.ok else None
        if validation is not None:
            payload["validation"] = asdict(validation)
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(result)
    return 0 if result.ok else 1


async def cmd_evaluate(args, service: DialogService) -> int:
    """Score existing text without regenerating it."""
    ctx = load_context(args.context)
    result = await service.evaluate_quality(args.text, ctx, args.node_type)
    if result is None:
        print("No evaluation available (context has no current node id)")
        return 1

    if args.json:
        print(json.dumps(asdict(result), indent=2, default=str))
        return 0

    scores = result.scores
    print(f"Combined:          {scores.combined:.2f}")
    print(f"Character voice:   {scores.character_voice:.2f}")
    print(f"Context coherence: {scores.context_coherence:.2f}")
    for issue in result.issues:
        print(f"  [{issue.severity.value}] {issue.type.value}: {issue.description}")
        print(f"      fix: {issue.suggestion}")
    for strength in result.strengths:
        print(f"  + {strength}")
    return 0


COMMANDS = {
    "models": cmd_models,
    "generate": cmd_generate,
    "evaluate": cmd_evaluate,
}


async def run(args) -> int:
    async with build_service(args) as service:
        return await COMMANDS[args.command](args, service)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="dialogforge",
        description="Generate and validate branching dialog with a local Ollama model",
    )
    parser.add_argument("--settings", help="JSON settings file")
    parser.add_argument("--model", "-m", help="Model name (overrides settings)")
    parser.add_argument("--base-url", dest="base_url", help="Ollama base URL (overrides settings)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable info logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # models
    p_models = subparsers.add_parser("models", help="List available models")
    p_models.add_argument("--json", "-j", action="store_true")

    # generate
    p_generate = subparsers.add_parser("generate", help="Generate text for a node")
    p_generate.add_argument("node_type", help="Node type, e.g. npcDialog or playerResponse")
    p_generate.add_argument("--context", "-c", required=True, help="GenerateContext JSON file")
    p_generate.add_argument("--tags", "-t", help="Tag registry JSON file")
    p_generate.add_argument("--custom", help="Custom instructions instead of standard generation")
    p_generate.add_argument("--force", action="store_true", help="Skip the context check")
    p_generate.add_argument("--json", "-j", action="store_true")

    # evaluate
    p_evaluate = subparsers.add_parser("evaluate", help="Score existing node text")
    p_evaluate.add_argument("node_type", help="Node type of the text")
    p_evaluate.add_argument("text", help="Text to evaluate")
    p_evaluate.add_argument("--context", "-c", required=True, help="GenerateContext JSON file")
    p_evaluate.add_argument("--tags", "-t", help="Tag registry JSON file")
    p_evaluate.add_argument("--json", "-j", action="store_true")

    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger("dialogforge").setLevel(logging.INFO)

    try:
        code = asyncio.run(run(args))
    except (ValueError, TypeError, OSError) as e:
        logger.error(f"Input error: {e}")
        sys.exit(1)
    except DialogForgeError as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
