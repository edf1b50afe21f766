# grouping.py
import math
import random

# Roles POGIL en el orden en que se asignan dentro de cada grupo
ROLES = ("facilitator", "spokesperson", "analyst", "qc")


class GroupSetupError(ValueError):
    """La configuración de grupos enviada no es válida."""


def shuffle_into_groups(student_ids, group_size=4, rng=random):
    """Mezcla los estudiantes y los reparte en grupos consecutivos de ``group_size``.

    El último grupo puede quedar incompleto.
    """
    if group_size <= 0:
        raise GroupSetupError("El tamaño de grupo debe ser mayor que cero.")

    shuffled = list(student_ids)
    rng.shuffle(shuffled)
    return [shuffled[i:i + group_size] for i in range(0, len(shuffled), group_size)]


def assign_roles(group):
    """Asigna los roles por posición; a partir del quinto miembro el rol es None."""
    assigned = []
    for position, student_id in enumerate(group):
        if not student_id:
            continue
        role = ROLES[position] if position < len(ROLES) else None
        assigned.append((student_id, role))
    return assigned


def count_members(groups):
    return sum(len(group.get("members") or []) for group in groups)


def validate_group_setup(groups, minimum=4):
    if not groups or count_members(groups) < minimum:
        raise GroupSetupError(f"At least {minimum} students are required")


def pick_active_student(student_ids, now, rotation_seconds=60):
    """Elige al estudiante activo rotando cada ``rotation_seconds`` segundos.

    ``now`` es un ``datetime`` o una marca de tiempo en segundos.
    """
    ordered = list(dict.fromkeys(student_ids))
    if not ordered:
        return None

    timestamp = now.timestamp() if hasattr(now, "timestamp") else float(now)
    slot = math.floor(timestamp / rotation_seconds)
    return ordered[slot % len(ordered)]
