# sync bus actions
CANTON_PERMISSIONS_UPDATED = "cantonPermissionsUpdated"
PERMISSIONS_DELETED = "delete"
PERSONA_PERMISSIONS_UPDATED = "personaPermissionsUpdated"
