from __future__ import annotations

from typing import Any, Dict

SAMPLE_OWNER = "acme"
SAMPLE_REPO = "social-app"
SAMPLE_FILE = "src/server/modules/friends/friends.router.ts"

# Shape of a real Sentry "error.created" integration webhook, used by dev runs without a prompt.
SAMPLE_SENTRY_PAYLOAD: Dict[str, Any] = {
    "action": "created",
    "data": {
        "error": {
            "event_id": "3f5c1540dbaf41f6aa0db0c2cd9e7613",
            "level": "error",
            "environment": "development",
            "release": "b8dce913b03c455a816f0335feffc60274ebd2b5",
            "transaction": "POST /api/[[...route]]",
            "culprit": "POST /api/[[...route]]",
            "location": SAMPLE_FILE,
            "message": "Demo: CreateFriend crash",
            "metadata": {
                "filename": SAMPLE_FILE,
                "function": "eval",
                "type": "Error",
                "value": "Demo: CreateFriend crash",
            },
            "request": {"url": "http://localhost:3000/api/friends", "method": "POST"},
            "exception": {
                "values": [
                    {
                        "type": "Error",
                        "value": "Demo: CreateFriend crash",
                        "stacktrace": {
                            "frames": [
                                {
                                    "function": "eval",
                                    "module": "friends.router.ts",
                                    "filename": SAMPLE_FILE,
                                    "abs_path": SAMPLE_FILE,
                                    "lineno": 171,
                                    "colno": 13,
                                    "pre_context": [
                                        '     const body = ctx.req.valid("json");',
                                        '     if (body.name?.toLowerCase().includes("crash")) {',
                                    ],
                                    "context_line": '       throw new Error("Demo: CreateFriend crash");',
                                    "post_context": [
                                        "     }",
                                        "     const friend = await prisma.friend.create({",
                                        "       data: {",
                                    ],
                                    "in_app": True,
                                }
                            ]
                        },
                    }
                ]
            },
            "contexts": {
                "trace": {
                    "trace_id": "f90c926c150c54126649671484ffc7ef",
                    "span_id": "3559bef6696e9b52",
                    "parent_span_id": "1d0dee334e4e4176",
                },
                "runtime": {"name": "node", "version": "v22.12.0"},
            },
            "web_url": "https://sentry.io/organizations/acme/issues/6818814471/events/3f5c1540dbaf41f6aa0db0c2cd9e7613/",
            "issue_url": "https://sentry.io/api/0/organizations/acme/issues/6818814471/",
        }
    },
}
