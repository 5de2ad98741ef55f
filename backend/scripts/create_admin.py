#!/usr/bin/env python
"""Create (or re-activate) a super admin account.

Usage:
    python backend/scripts/create_admin.py --email admin@example.com --name Owner
The password comes from --password or SEED_ADMIN_PASSWORD.
"""
from __future__ import annotations
import os, sys, argparse
from sqlalchemy import select
from werkzeug.security import generate_password_hash

sys.path.append(os.path.abspath('backend'))

from backoffice import create_app, get_db  # type: ignore
from backoffice.constants.roles import ROLE_SUPER_ADMIN
from backoffice.models.authz import Base, User


def parse_args():
    p = argparse.ArgumentParser(description='Create a super admin user')
    p.add_argument('--email', default=os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com'))
    p.add_argument('--name', default='Super Admin')
    p.add_argument('--password', default=os.getenv('SEED_ADMIN_PASSWORD'))
    return p.parse_args()


def main():
    args = parse_args()
    if not args.password:
        print('[ERROR] --password or SEED_ADMIN_PASSWORD required')
        sys.exit(2)
    app = create_app()
    with app.app_context():
        session = get_db()
        Base.metadata.create_all(session.get_bind(), checkfirst=True)
        user = session.execute(select(User).where(User.email == args.email)).scalar_one_or_none()
        if user is None:
            user = User(email=args.email, name=args.name, role=ROLE_SUPER_ADMIN,
                        password_hash=generate_password_hash(args.password), is_active=True)
            session.add(user)
            action = 'Created'
        else:
            user.role = ROLE_SUPER_ADMIN
            user.is_active = True
            user.password_hash = generate_password_hash(args.password)
            action = 'Updated'
        session.commit()
        print(f'[INFO] {action} super admin {args.email} (id={user.id})')


if __name__ == '__main__':
    main()
