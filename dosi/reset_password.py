import argparse
import json
from pathlib import Path

from dosi.config import settings
from dosi.services.auth_service import write_credentials


def main() -> None:
    p = argparse.ArgumentParser(description="Reset the operator login of the Dosi device registry")
    p.add_argument("--username", default=settings.admin_username)
    p.add_argument("--password", required=True, help="New password (>= 8 chars)")
    p.add_argument("--credentials", default=str(settings.credentials_file), help="Path to credentials.json")
    args = p.parse_args()

    if len(args.password) < 8:
        p.error("password must be at least 8 characters")

    path = write_credentials(args.username, args.password, Path(args.credentials))
    print(json.dumps({"ok": True, "username": args.username, "credentials": str(path.resolve())}, ensure_ascii=False))


if __name__ == "__main__":
    main()
