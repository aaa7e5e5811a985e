import asyncio
import sqlite3

from db_reconcile import ConnectionDescriptor, ReconcileService


def create_sqlite_data(path: str, offset: int) -> None:
    conn = sqlite3.connect(path)
    cursor = conn.cursor()

    cursor.execute("DROP TABLE IF EXISTS users")
    cursor.execute("""
                   CREATE TABLE users
                   (
                       id    INTEGER PRIMARY KEY,
                       name  TEXT NOT NULL,
                       email TEXT UNIQUE NOT NULL
                   )
                   """)

    # 目标库从 offset 开始，且前 10 行名字不同
    for i in range(offset, 100):
        name = f"用户{i}" if path == "source.db" or i >= 10 else f"旧用户{i}"
        cursor.execute(
            "INSERT INTO users (id, name, email) VALUES (?, ?, ?)",
            (i, name, f"user{i}@example.com")
        )

    conn.commit()
    conn.close()
    print(f"✓ 测试数据库创建完成: {path}")


async def main():
    create_sqlite_data("source.db", 0)
    create_sqlite_data("target.db", 5)

    source = ConnectionDescriptor(name="source", type="sqlite", database="source.db")
    target = ConnectionDescriptor(name="target", type="sqlite", database="target.db")
    service = ReconcileService()

    # 比对
    result = await service.compare(source, target, "users")
    print(f"一致: {result.matching_rows}  不同: {result.different_rows}  仅源端: {result.source_only_rows}")

    # 预览
    job = await service.prepare_sync(source, target, "users", atomic=True)
    preview = service.preview_sync(job)
    for statement in preview.statements[:4]:
        print(statement)

    # 同步
    outcome = await service.sync(job)
    print(f"插入: {outcome.inserted_count}  更新: {outcome.updated_count}  错误: {len(outcome.errors)}")


if __name__ == "__main__":
    asyncio.run(main())
