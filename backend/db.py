"""DB layer router: delegates to db_local (psycopg2) in TEST_MODE, db_supabase otherwise."""

import os

if os.getenv("TEST_MODE") == "1":
    from db_local import (  # noqa: F401
        get_by_key,
        upsert,
        add_sync_history,
        get_last_sync_time,
        get_sync_history,
    )
else:
    from db_supabase import (  # noqa: F401
        get_by_key,
        upsert,
        add_sync_history,
        get_last_sync_time,
        get_sync_history,
    )
