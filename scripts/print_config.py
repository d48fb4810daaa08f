from __future__ import annotations

import argparse
import dataclasses
import pprint

from market_structure.config import load_config


def main():
    p = argparse.ArgumentParser(description="Print the effective config (YAML + env overrides)")
    p.add_argument("--config", default=None, help="Path to YAML config (optional)")
    args = p.parse_args()

    cfg = load_config(args.config)

    print("EFFECTIVE CONFIG:")
    pprint.pprint(dataclasses.asdict(cfg))


if __name__ == "__main__":
    main()
