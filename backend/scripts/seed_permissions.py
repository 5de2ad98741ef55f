#!/usr/bin/env python
"""Idempotent seed script for page and CRUD permission rows.

Only missing (role, page) rows are inserted; rows edited by an admin are left alone.

Usage:
    python backend/scripts/seed_permissions.py                # seed normally
    python backend/scripts/seed_permissions.py --dry-run      # run logic then rollback (no DB changes)
    python backend/scripts/seed_permissions.py --show-roles   # print role -> page counts after seeding
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from backoffice import create_app, get_db  # type: ignore
from backoffice.constants.roles import DEFAULT_CRUD_ACCESS, DEFAULT_PAGE_ACCESS
from backoffice.models.authz import Base, CrudPermission, PagePermission


def ensure_page_permissions(session):
    existing = {(r.role, r.page) for r in session.execute(select(PagePermission)).scalars().all()}
    created = 0
    for role, pages in DEFAULT_PAGE_ACCESS.items():
        for page in pages:
            if (role, page) not in existing:
                session.add(PagePermission(role=role, page=page, columns=['*'], can_access=True))
                created += 1
    return created


def ensure_crud_permissions(session):
    existing = {
        (r.role, r.page) for r in session.execute(
            select(CrudPermission).where(CrudPermission.user_id.is_(None))
        ).scalars().all()
    }
    created = 0
    for role, pages in DEFAULT_CRUD_ACCESS.items():
        for page, (can_create, can_edit, can_delete) in pages.items():
            if (role, page) not in existing:
                session.add(CrudPermission(role=role, page=page, can_create=can_create,
                                           can_edit=can_edit, can_delete=can_delete))
                created += 1
    return created


def print_role_summary(session):
    counts = {}
    for row in session.execute(select(PagePermission).where(PagePermission.can_access.is_(True))).scalars():
        counts[row.role] = counts.get(row.role, 0) + 1
    if not counts:
        print('[INFO] No page permissions present.')
        return
    name_w = max(len(r) for r in counts)
    print(f"{'Role'.ljust(name_w)} | Pages")
    print('-' * (name_w + 10))
    for role in sorted(counts):
        print(f"{role.ljust(name_w)} | {str(counts[role]).rjust(5)}")


def parse_args():
    p = argparse.ArgumentParser(
        description='Seed default page and CRUD permissions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_permissions.py\n  dry run: seed_permissions.py --dry-run\n"""),
    )
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--show-roles', action='store_true', help='Print page counts per role after seeding')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM user_permissions LIMIT 1'))
        except Exception:
            # Bootstrap only; real environments run alembic upgrade
            session.rollback()
            Base.metadata.create_all(session.get_bind())
        finally:
            session.commit()

        created_pages = ensure_page_permissions(session)
        created_crud = ensure_crud_permissions(session)
        if args.show_roles:
            session.flush()
            print_role_summary(session)
        if args.dry_run:
            session.rollback()
            print(f'[DRY-RUN] (rolled back) page rows would create: {created_pages}, crud rows would create: {created_crud}')
        else:
            session.commit()
            print(f'[DONE] page rows created: {created_pages}, crud rows created: {created_crud}')


if __name__ == '__main__':
    main()
