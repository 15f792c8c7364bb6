HELLO_PROMPT = "Hello"

ANALYSIS_PROMPT = """\
이 얼굴 사진을 미용 목적으로 분석해주세요.
다음 항목들을 중점적으로 분석하여 한국어로 JSON 응답을 주세요:
1. 얼굴 좌우 대칭성 (중앙 기준 각도 차이 포함)
2. 얼굴의 정확한 위치 (Bounding Box 0-1000 scale)
3. 피부 상태: 기미/잡티, 다크서클, 피부톤, 주름

각 상태에 대해 구체적인 진단 내용을 작성해주세요.
"""

GENERATION_PROMPT = """\
Professional Aesthetic Dermatology & Plastic Surgery Simulation.

Input: A photo of a user's face.
Analysis Data:
- Current Tilt/Asymmetry: {tilt_angle} degrees.
- Asymmetry Details: {asymmetry_description}
- Skin Issues: {conditions}

GOAL: Generate a realistic "After" image that corrects these issues.

STRICT EDITING INSTRUCTIONS:

1. **PERFECT SYMMETRY (0° TILT)**:
   - Correct the head tilt to be exactly 0 degrees (perfect vertical alignment).
   - Make the left and right sides of the face symmetrical (eyes, eyebrows, cheekbones, jawline).
   - The facial axis must be perfectly straight.

2. **SKIN RETOUCHING (Based on Diagnosis)**:
   - **Blemishes/Spots**: Remove visible blemishes, acne, and pigmentation.
   - **Dark Circles**: Brighten the under-eye area to remove dark circles and hollowness.
   - **Skin Tone**: Even out the skin tone for a bright, healthy, and translucent look.
   - **Wrinkles**: Smooth out deep wrinkles (nasolabial folds, forehead lines) while keeping natural skin texture.

3. **IDENTITY & REALISM**:
   - The subject MUST remain recognizable (same person).
   - Maintain natural skin pores (do not create a "plastic" or "wax" look).
   - Preserve original hair, clothing, background, and lighting conditions.

Return ONLY the generated image.
"""
