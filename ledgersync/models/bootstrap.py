"""Bootstrap dataset seeded into an empty local store."""

from ledgersync.models.transaction import (
    Category,
    PaymentMethod,
    ProjectDept,
    Role,
    TransactionType,
    User,
)


BOOTSTRAP_ADMIN_ID = "admin"
BOOTSTRAP_ADMIN_LOGIN = "admin"
BOOTSTRAP_ADMIN_PASSWORD = "admin888"

# Mock records shipped by early versions; purged from stores on startup.
LEGACY_MOCK_TRANSACTION_IDS = frozenset({"t1", "t2", "t3"})


def bootstrap_admin() -> User:
    return User(
        id=BOOTSTRAP_ADMIN_ID,
        name="系統管理員",
        role=Role.MANAGER,
        avatar="https://ui-avatars.com/api/?name=Admin&background=0D8ABC&color=fff",
        password=BOOTSTRAP_ADMIN_PASSWORD,
    )


INITIAL_CATEGORIES = [
    Category(id="c1", name="營業收入", type=TransactionType.INCOME),
    Category(id="c2", name="辦公室租金", type=TransactionType.EXPENSE),
    Category(id="c3", name="員工伙食", type=TransactionType.EXPENSE),
    Category(id="c4", name="交通差旅", type=TransactionType.EXPENSE),
    Category(id="c5", name="設備採購", type=TransactionType.EXPENSE),
]

INITIAL_PROJECTS = [
    ProjectDept(id="p1", name="行政部"),
    ProjectDept(id="p2", name="業務部"),
    ProjectDept(id="p3", name="專案 A - 網站改版"),
]

INITIAL_PAYMENT_METHODS = [
    PaymentMethod(id="pm1", name="公司銀行帳戶"),
    PaymentMethod(id="pm2", name="公司信用卡"),
    PaymentMethod(id="pm3", name="員工代墊 (現金)"),
]
