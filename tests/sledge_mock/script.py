"""Source of the fake sledge executable.

The script keeps instance state in a JSON scenario file next to it and
appends every invocation to a JSON-lines call log, so tests can assert on
exact argument lists. It is written to disk by MockSledge with a shebang
pointing at the running interpreter.
"""

from __future__ import annotations

SCRIPT_TEMPLATE = '''#!{python}
import json
import sys
import time
from pathlib import Path

HERE = Path(__file__).resolve().parent
SCENARIO = HERE / "scenario.json"
CALLS = HERE / "calls.jsonl"


def main() -> int:
    verb = sys.argv[1] if len(sys.argv) > 1 else ""
    flags = {{}}
    for arg in sys.argv[2:]:
        key, _, value = arg.lstrip("-").partition("=")
        flags[key] = value

    with CALLS.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps({{"verb": verb, "args": sys.argv[1:], "flags": flags}}) + "\\n")

    scenario = json.loads(SCENARIO.read_text(encoding="utf-8"))
    instances = scenario.setdefault("instances", {{}})
    name = flags.get("instance", "")

    failure = scenario.get("failures", {{}}).get(verb)
    if failure is not None:
        time.sleep(failure.get("sleep", 0))
        sys.stdout.write(failure.get("output", ""))
        return failure.get("exit_code", 1)

    if verb == "describe":
        if name not in instances:
            sys.stderr.write("ERROR: (gcloud.sql.instances.describe) instance not found\\n")
            return 1
        raw = scenario.get("raw_describe")
        sys.stdout.write(raw if raw is not None else json.dumps(instances[name]))
        return 0

    if verb == "create":
        instances[name] = {{
            "name": name,
            "region": flags.get("region", ""),
            "databaseVersion": flags.get("dbVersion", ""),
            "state": scenario.get("create_state", "PENDING_CREATE"),
            "settings": {{"tier": flags.get("tier", "")}},
            "ipAddresses": [],
        }}
        SCENARIO.write_text(json.dumps(scenario), encoding="utf-8")
        print("Creating instance " + name + "...done.")
        return 0

    if verb == scenario.get("update_verb", "upgrade"):
        if name not in instances:
            sys.stderr.write("ERROR: instance not found\\n")
            return 1
        instances[name]["databaseVersion"] = flags.get("dbVersion", "")
        instances[name].setdefault("settings", {{}})["tier"] = flags.get("tier", "")
        SCENARIO.write_text(json.dumps(scenario), encoding="utf-8")
        print("Patching instance " + name + "...done.")
        return 0

    if verb == "delete":
        if name not in instances:
            sys.stderr.write("ERROR: instance not found\\n")
            return 1
        del instances[name]
        SCENARIO.write_text(json.dumps(scenario), encoding="utf-8")
        print("Deleting instance " + name + "...done.")
        return 0

    sys.stderr.write("unknown verb: " + verb + "\\n")
    return 2


sys.exit(main())
'''
