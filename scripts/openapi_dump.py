# FILE: scripts/openapi_dump.py
# Usage: python scripts/openapi_dump.py [http://127.0.0.1:8000/openapi.json]
# Without a URL the schema is rendered from an in-process app (no AWS calls).
import json, sys, urllib.request

if len(sys.argv) > 1:
    schema = json.load(urllib.request.urlopen(sys.argv[1]))
else:
    from iidattestor.config import Settings
    from iidattestor.provenance import InstanceDescriber
    from iidattestor.service_http import create_app

    schema = create_app(settings=Settings(), describer=InstanceDescriber()).openapi()
print(json.dumps(schema, indent=2))
