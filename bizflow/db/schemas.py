"""SQL schemas for the hosted backend tables (PostgreSQL / PostgREST)."""

# Column names match Entity.to_row(); every row belongs to one owner (user_id)

# Transactions table - customer/product names are write-time snapshots
TRANSACTIONS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    description TEXT NOT NULL,
    amount NUMERIC(14, 2) NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('income', 'expense', 'refund')),
    category TEXT NOT NULL,
    payment_method TEXT,
    customer_id TEXT,
    customer_name TEXT,
    product_ids TEXT[] DEFAULT '{}',
    product_names TEXT[] DEFAULT '{}',
    status TEXT DEFAULT 'completed' CHECK (status IN ('pending', 'completed', 'canceled')),
    notes TEXT,
    is_refundable BOOLEAN,
    related_transaction_id TEXT,
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, date DESC);
"""

CUSTOMERS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS customers (
    id TEXT PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT NOT NULL,
    address TEXT,
    document TEXT,
    join_date TEXT NOT NULL,
    total_purchases NUMERIC(14, 2) DEFAULT 0,
    last_purchase TEXT,
    status TEXT DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
    category TEXT CHECK (category IN ('regular', 'vip', 'enterprise', 'new')),
    notes TEXT,
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_customers_user ON customers(user_id);
"""

PRODUCTS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT,
    price NUMERIC(14, 2) NOT NULL,
    cost NUMERIC(14, 2),
    stock INTEGER DEFAULT 0,
    category TEXT NOT NULL,
    minimum_stock INTEGER,
    supplier TEXT,
    barcode TEXT,
    created_at TEXT,
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_products_user ON products(user_id);
"""

SUPPLIERS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS suppliers (
    id TEXT PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    contact_name TEXT,
    email TEXT,
    phone TEXT NOT NULL,
    address TEXT,
    products TEXT[] DEFAULT '{}',
    document TEXT,
    category TEXT,
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_suppliers_user ON suppliers(user_id);
"""

TABLE_SCHEMAS = {
    'transactions': TRANSACTIONS_TABLE_SCHEMA,
    'customers': CUSTOMERS_TABLE_SCHEMA,
    'products': PRODUCTS_TABLE_SCHEMA,
    'suppliers': SUPPLIERS_TABLE_SCHEMA,
}

# Row-level security: an owner only ever sees and writes their own rows
OWNER_POLICY_TEMPLATE = """
ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;

DROP POLICY IF EXISTS "{table}_owner_select" ON {table};
CREATE POLICY "{table}_owner_select" ON {table}
    FOR SELECT USING (auth.uid() = user_id);

DROP POLICY IF EXISTS "{table}_owner_insert" ON {table};
CREATE POLICY "{table}_owner_insert" ON {table}
    FOR INSERT WITH CHECK (auth.uid() = user_id);

DROP POLICY IF EXISTS "{table}_owner_update" ON {table};
CREATE POLICY "{table}_owner_update" ON {table}
    FOR UPDATE USING (auth.uid() = user_id) WITH CHECK (auth.uid() = user_id);

DROP POLICY IF EXISTS "{table}_owner_delete" ON {table};
CREATE POLICY "{table}_owner_delete" ON {table}
    FOR DELETE USING (auth.uid() = user_id);
"""


def owner_policies(table: str) -> str:
    """Row-level-security statements for one table"""
    if table not in TABLE_SCHEMAS:
        raise ValueError(f"Unknown table: {table}")
    return OWNER_POLICY_TEMPLATE.format(table=table)


def render_schema_sql() -> str:
    """Full setup script: every table followed by its owner policies"""
    parts = []
    for table, schema in TABLE_SCHEMAS.items():
        parts.append(schema.strip())
        parts.append(owner_policies(table).strip())
    return "\n\n".join(parts) + "\n"
