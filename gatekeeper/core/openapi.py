"""OpenAPI customization for admission-controlled routes.

Enriches the generated schema with:
- tags metadata
- a shared ``TooManyRequests`` response documenting the 429 body and the
  ``X-RateLimit-*`` / ``Retry-After`` headers
- the identity headers forwarded by the upstream auth layer

Health endpoints are never throttled and are left untouched.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from gatekeeper.core.config import IdentitySettings

TOO_MANY_REQUESTS_REF = "#/components/responses/TooManyRequests"

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Requests admitted per window by the tightest tier.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "UNIX time (seconds) at which the window resets.",
        "schema": {"type": "integer"},
    },
    "Retry-After": {
        "description": "Seconds to wait before retrying.",
        "schema": {"type": "integer"},
    },
}


def _identity_parameters(identity: IdentitySettings) -> list[Dict[str, Any]]:
    return [
        {
            "name": identity.user_header,
            "in": "header",
            "required": False,
            "description": "Authenticated identity forwarded by the gateway.",
            "schema": {"type": "string"},
        },
        {
            "name": identity.tier_header,
            "in": "header",
            "required": False,
            "description": "Subscription tier of the identity (e.g. 'premium').",
            "schema": {"type": "string"},
        },
    ]


def apply_openapi_customizations(app: FastAPI, identity: IdentitySettings | None = None) -> None:
    """Patch FastAPI's OpenAPI generation to document admission behavior.

    Every operation except health gets a 429 response referencing the shared
    component and the identity header parameters (unless already declared).
    """
    identity = identity or IdentitySettings()
    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        responses = schema.setdefault("components", {}).setdefault("responses", {})
        responses.setdefault(
            "TooManyRequests",
            {
                "description": "Throttled by a rate-limit tier or the abuse detector.",
                "headers": _RATE_LIMIT_HEADERS,
                "content": {
                    "application/json": {
                        "schema": {
                            "type": "object",
                            "properties": {
                                "success": {"type": "boolean", "example": False},
                                "error": {"type": "string"},
                                "code": {
                                    "type": "string",
                                    "enum": ["RATE_LIMIT_EXCEEDED", "SUSPICIOUS_ACTIVITY"],
                                },
                                "retryAfter": {"type": "integer"},
                                "request_id": {"type": "string", "nullable": True},
                            },
                        }
                    }
                },
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Limits",
                "description": "Admission tiers applying to the caller.",
            },
            {
                "name": "Health",
                "description": "Liveness checks; never rate limited.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if path.endswith("/health"):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                method_obj.setdefault("responses", {}).setdefault("429", {"$ref": TOO_MANY_REQUESTS_REF})
                params = method_obj.setdefault("parameters", [])
                declared = {(p.get("name", "").lower(), p.get("in")) for p in params}
                for param in _identity_parameters(identity):
                    if (param["name"].lower(), "header") not in declared:
                        params.append(param)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
