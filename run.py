from __future__ import annotations

import os

from studiohub import create_app


def main() -> None:
    flask_app = create_app()

    if os.environ.get("SHOW_ROUTES", "0") in {"1", "true", "True"}:
        print("\n=== URL MAP ===")
        for rule in sorted(flask_app.url_map.iter_rules(), key=lambda item: item.rule):
            print(f"{','.join(sorted(rule.methods - {'HEAD', 'OPTIONS'})):<12} {rule}")
        print("===============\n")

    flask_app.logger.info(
        "Starting StudioHub (auto-complete on read: %s)", flask_app.config["AUTO_COMPLETE_ON_READ"]
    )
    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    flask_app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=debug_enabled)


if __name__ == "__main__":
    main()
