from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url, tz_aware=True)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    def get_client(self):
        return self.client

    async def _create_indexes(self):
        """Create MongoDB indexes for the workflow collections."""
        try:
            # Orders - stage queues are read by current_stage + status, oldest due first
            await self.db.orders.create_index("order_id", unique=True)
            await self.db.orders.create_index([("current_stage", 1), ("status", 1), ("due_date", 1)])
            await self.db.orders.create_index("created_at")
            await self.db.orders.create_index("customer_phone")

            # Timeline - per order, ascending by timestamp
            await self.db.order_timeline.create_index("entry_id", unique=True)
            await self.db.order_timeline.create_index([("order_id", 1), ("timestamp", 1)])

            # Staff work logs - by staff + time window
            await self.db.staff_work_logs.create_index("log_id", unique=True)
            await self.db.staff_work_logs.create_index([("staff_id", 1), ("timestamp", -1)])
            await self.db.staff_work_logs.create_index("timestamp")

            # Assignment audit logs - by order and by new assignee, newest first
            await self.db.assignment_logs.create_index("log_id", unique=True)
            await self.db.assignment_logs.create_index([("order_id", 1), ("timestamp", -1)])
            await self.db.assignment_logs.create_index([("assigned_to_staff_id", 1), ("timestamp", -1)])
            await self.db.assignment_logs.create_index("timestamp")

            # Customers - one profile per normalised phone number
            await self.db.customers.create_index("phone_number", unique=True)
            await self.db.customers.create_index("last_order_date")

            # Staff directory
            await self.db.staff.create_index("staff_id", unique=True)
            await self.db.staff.create_index("role")

            # Templates - one per garment type per stage
            for name in ("marking_templates", "cutting_templates", "stitching_templates"):
                await self.db[name].create_index("garment_type", unique=True)

            # Standalone stage tasks
            for name in ("cutting_tasks", "stitching_tasks"):
                await self.db[name].create_index("task_id", unique=True)
                await self.db[name].create_index([("order_id", 1), ("task_order", 1)])
                await self.db[name].create_index("assigned_staff_id")

            # OTP requests expire on their own as well as on verify
            await self.db.otp_requests.create_index("order_id", unique=True)
            await self.db.otp_requests.create_index("expires_at", expireAfterSeconds=0)

            # Audit retry queue (outbox for timeline / work log appends)
            await self.db.audit_retry_queue.create_index([("status", 1), ("next_run_at", 1)])
            await self.db.audit_retry_queue.create_index(
                [("collection", 1), ("record_id", 1)],
                unique=True
            )
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

