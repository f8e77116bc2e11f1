"""
Script para criar um usuário administrador

Uso:
    itinerario-create-admin --email admin@maqz.com.br --password segredo [--name "Administrador"]

Com o banco vazio (nenhum papel cadastrado) o primeiro usuário é criado sem autorização.
Depois disso o script age em nome do primeiro admin existente.
"""
import argparse
import sys

from ..db import Base, SessionLocal, engine
from ..errors import UserAdminError
from ..models.models import User, UserRole
from ..services.user_admin import create_user, roles_exist


def find_admin(db):
    return (
        db.query(User)
        .join(UserRole, UserRole.user_id == User.id)
        .filter(UserRole.role == "admin", User.is_active.is_(True))
        .order_by(User.created_at.asc())
        .first()
    )


def create_admin(email: str, password: str, name: str = None) -> int:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        caller = None
        if roles_exist(db):
            caller = find_admin(db)
            if caller is None:
                print("[ERROR] Existem usuários cadastrados mas nenhum admin ativo")
                return 1
        try:
            user = create_user(db, caller, email=email, password=password, name=name, role="admin")
        except UserAdminError as exc:
            print(f"[ERROR] {exc.message}")
            return 1
        print(f"[OK] Admin criado: {user.email} ({user.id})")
        return 0
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Cria um usuário administrador")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--name", default=None)
    args = parser.parse_args(argv)
    return create_admin(args.email, args.password, args.name)


if __name__ == "__main__":
    sys.exit(main())
