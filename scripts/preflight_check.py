#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Set dummy env vars to avoid KeyErrors during config load if any
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    from enrollflow.settings import settings
    print(f"Settings: OK (storage={settings.STORAGE_BACKEND}, ttl={settings.STATE_TTL_MINUTES}m, "
          f"timeout={settings.SESSION_TIMEOUT_MINUTES}m)")

    import enrollflow.core.state_machine
    print("Import enrollflow.core.state_machine: OK")

    import enrollflow.payment.confirmation
    print("Import enrollflow.payment.confirmation: OK")

    import enrollflow.registration.engine
    print("Import enrollflow.registration.engine: OK")

    if settings.STORAGE_BACKEND == "redis":
        from enrollflow.store.redis_conn import ping_redis
        if not ping_redis():
            print(f"WARNING: STORAGE_BACKEND=redis but {settings.REDIS_URL} did not answer PING")

    if settings.SESSION_TIMEOUT_MINUTES != settings.STATE_TTL_MINUTES:
        print("WARNING: SESSION_TIMEOUT_MINUTES and STATE_TTL_MINUTES differ; stored state and the "
              "session timer will expire at different times")
    if not settings.SECONDARY_PLATFORM_URL:
        print("WARNING: SECONDARY_PLATFORM_URL is not set; every registration will be degraded")
    if not (settings.PAYMENT_VERIFY_URL or settings.PAYMENT_GATEWAY_SECRET):
        print("WARNING: neither PAYMENT_VERIFY_URL nor PAYMENT_GATEWAY_SECRET is set; payments cannot be verified")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
