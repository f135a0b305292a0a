#!/usr/bin/env python3
"""
Export the rule catalog JSON into the operator workbook layout
Enables table-driven updates: export XLSX → edit prices/durations → point
JOB_ENGINE_CATALOG_PATH at the workbook (reloaded on change)
"""

import argparse
import json
from pathlib import Path

from job_engine.rules import DEFAULT_CATALOG_PATH, RuleCatalog
from job_engine.rules.xlsx_catalog_loader import write_catalog_workbook


def export_catalog(source: Path, output: Path) -> Path:
    print(f"📊 Reading catalog from: {source}")
    with open(source, "r", encoding="utf-8") as f:
        data = json.load(f)

    # RuleCatalog raises ValueError on an inconsistent table
    catalog = RuleCatalog(data, source=str(source))
    print(f"   Version {catalog.version}, services: {[kind.value for kind in catalog.services()]}")

    write_catalog_workbook(data, output)
    print(f"✅ Workbook written: {output}")

    reloaded = RuleCatalog.from_xlsx(output)
    assert reloaded.version == catalog.version, f"Version mismatch after export: {reloaded.version}"
    print(f"✅ Workbook re-read OK ({reloaded.version})")
    return output


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--source", type=Path, default=DEFAULT_CATALOG_PATH)
    parser.add_argument("--output", type=Path, default=Path("catalog.xlsx"))
    args = parser.parse_args()

    export_catalog(args.source, args.output)


if __name__ == "__main__":
    main()
