from .auth import role_required, owner_or_admin, current_user, load_user
