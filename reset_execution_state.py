import sqlite3
import sys

DB_PATH = sys.argv[1] if len(sys.argv) > 1 else "data/bot.db"

conn = sqlite3.connect(DB_PATH)
cur = conn.cursor()

# drop the persisted ladder so the next start recomputes it from the live price
cur.execute(
    """
    UPDATE execution_state
    SET last_execution_time = NULL, next_execution_time = NULL,
        initial_price = NULL, price_targets = NULL, execution_count = 0
    WHERE id = 1
    """
)

conn.commit()

cur.execute("SELECT initial_price, price_targets, execution_count FROM execution_state WHERE id = 1")

row = cur.fetchone()
print("RESET RESULT:", row)

conn.close()
