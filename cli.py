#!/usr/bin/env python3
import argparse

from segflow.orchestrator import run_once


def main():
    parser = argparse.ArgumentParser(description="segflow CLI")
    parser.add_argument("--config", required=True, help="Path to YAML config")
    parser.add_argument("--input", dest="input_path", help="Input JSON file (overrides input.path)")
    parser.add_argument("--output-dir", dest="output_dir", help="Output directory (overrides output.dir)")
    parser.add_argument("--stop-on-error", dest="stop_on_error", action="store_true", help="Abort the chain at the first failing step")
    parser.add_argument("--continue-on-error", dest="stop_on_error", action="store_false", help="Log failing steps and keep going")
    parser.set_defaults(stop_on_error=None)
    args = parser.parse_args()

    result = run_once(
        args.config,
        input_path=args.input_path,
        output_dir=args.output_dir,
        stop_on_error=args.stop_on_error,
    )
    raise SystemExit(0 if result.success else 1)


if __name__ == "__main__":
    main()
