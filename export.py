import io
from openpyxl import Workbook
from openpyxl.styles import Font


def _bold_header(ws, headers):
    ws.append(headers)
    for col in range(1, len(headers) + 1):
        ws.cell(row=1, column=col).font = Font(bold=True)


def _autosize(ws):
    for col in ws.columns:
        max_length = 0
        col_letter = col[0].column_letter
        for cell in col:
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max_length + 2, 40)


def generate_xlsx(patient, schedule, progress):
    """Workbook with the patient's scheduled exercises and recorded progress.

    ``schedule`` is the assembled view (list of dicts), ``progress`` a list
    of ExerciseProgress rows.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"

    _bold_header(ws, ["Date", "Day", "Time Slot", "Exercise", "Category", "Difficulty", "Notes", "Completed"])
    for entry in schedule:
        slot = entry["time_slot"]
        ws.append([
            entry["date"],
            entry["day"].capitalize(),
            f"{slot['start_time']} - {slot['end_time']}",
            entry["exercise"]["name"],
            entry["exercise"]["category"],
            entry["exercise"]["difficulty"],
            entry["notes"] or "",
            "Yes" if entry["completed"] else "No",
        ])
    _autosize(ws)

    ws = wb.create_sheet("Progress")
    _bold_header(ws, [
        "Date", "Exercise", "Completed", "Sets", "Reps", "Duration (min)", "Weight (kg)",
        "Target Sets", "Target Reps", "Target Duration", "Feedback",
    ])
    for p in progress:
        ws.append([
            p.progress_date.strftime("%Y-%m-%d"),
            p.exercise_name,
            "Yes" if p.completed else "No",
            p.actual_sets,
            p.actual_reps,
            p.actual_duration,
            p.weight,
            p.target_sets,
            p.target_reps,
            p.target_duration,
            p.feedback or "",
        ])
    _autosize(ws)

    wb.properties.title = f"Exercise plan - {patient.full_name}"

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output
