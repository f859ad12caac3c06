# roles constants, as issued in the upstream token's "rol" claim
ADMIN_ROLE = "admin"
COLLABORATOR_ROLE = "colaborador"
