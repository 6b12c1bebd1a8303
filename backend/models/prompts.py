"""Fixed instructions sent to the image generation model."""

TRYON_PROMPT = """
Objective: Transfer the garment from Image 2 onto the person in Image 1.

Input Image 1: Person photo (the model).
Input Image 2: Garment photo (standalone clothing or clothing worn by someone else).

Instructions:

Detect the garment in Image 2 and replicate it exactly, preserving shape, fabric, color, patterns, and textures.

Overlay this garment onto the person in Image 1, replacing their original clothing.

Ensure the garment naturally fits the body, pose, and proportions of the person.

Match lighting, shading, and perspective so the garment blends seamlessly into Image 1.

Hard Constraints (Do Not Break):

Keep the person's face, hair, skin, body shape, and pose unchanged.

Keep the background of Image 1 unchanged.

Do not modify or add extra details to the garment. Replicate exactly what appears in Image 2.

Do not output anything except the final edited image.
"""

REFINE_PROMPT = """Your task is to edit the provided image based on the user's instruction.
- Apply the user's request precisely.
- Only change what is requested. Preserve all other aspects of the image, including the person, background, and unmodified parts of the clothing.
- Output ONLY the final, edited image. Do not include any text.

User instruction: "{instruction}\""""


def build_refine_prompt(instruction: str) -> str:
    return REFINE_PROMPT.format(instruction=instruction)
