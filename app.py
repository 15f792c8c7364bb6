import io
import logging

from flask import Flask, jsonify, request, send_file

from credential_store import CredentialStore, StorageError
from gemini_service import DEFAULT_FACE_BOX, GeminiService, display_severity
from image_preprocessor import InvalidInput, prepare_upload
from report import REPORT_FILENAME, build_report_pdf, describe_tilt, visual_tilt
from settings import HOST, LOG_LEVEL, MAX_UPLOAD_BYTES, PORT
from workflow import CredentialMissing, WorkflowController

logger = logging.getLogger(__name__)

# room for the multipart envelope around a 10MB file
UPLOAD_OVERHEAD = 1024 * 1024


def mask_credential(credential):
    """First four and last three characters of the key, for display."""
    if not credential:
        return ""
    if len(credential) <= 8:
        return "…"
    return f"{credential[:4]}…{credential[-3:]}"


def state_payload(controller):
    state = controller.snapshot()
    payload = state.to_dict()
    payload["hasCredential"] = controller.has_credential

    analysis = state.analysis_result
    if analysis is not None:
        tilt = analysis.tilt_angle or 0
        payload["view"] = {
            "tiltDescription": describe_tilt(tilt),
            "visualTilt": visual_tilt(tilt),
            "faceBox": (analysis.face_box or DEFAULT_FACE_BOX).to_dict(),
            "severities": [display_severity(c.severity) for c in analysis.skin_conditions],
        }
    return payload


def create_app(controller=None):
    if controller is None:
        controller = WorkflowController(GeminiService(), CredentialStore())

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + UPLOAD_OVERHEAD
    app.extensions["mirror_ai"] = controller

    @app.errorhandler(413)
    def too_large(_e):
        return jsonify({
            "error": "파일 크기가 너무 큽니다. 10MB 이하의 이미지를 사용해주세요.",
            "kind": "TooLarge",
        }), 413

    @app.route("/")
    def index():
        return HTML_PAGE

    @app.route("/api/state")
    def get_state():
        return jsonify(state_payload(controller))

    @app.route("/api/credential", methods=["GET"])
    def get_credential():
        return jsonify({
            "hasCredential": controller.has_credential,
            "masked": mask_credential(controller.credential),
        })

    @app.route("/api/credential/test", methods=["POST"])
    def test_credential():
        data = request.get_json(silent=True) or {}
        api_key = (data.get("apiKey") or "").strip()
        if not api_key:
            return jsonify({"ok": False, "message": "API Key를 입력해주세요."}), 400

        try:
            ok = controller.test_credential(api_key)
        except Exception as e:
            logger.error("API key test errored: %s", e)
            return jsonify({"ok": False, "message": f"오류 발생: {e}"}), 502

        if ok:
            return jsonify({"ok": True, "message": "연결 성공! Gemini API와 통신이 가능합니다."})
        return jsonify({"ok": False, "message": "연결 실패. API Key를 확인해주세요."})

    @app.route("/api/credential", methods=["POST"])
    def save_credential():
        data = request.get_json(silent=True) or {}
        api_key = (data.get("apiKey") or "").strip()
        if not api_key:
            return jsonify({"error": "저장할 API Key가 없습니다."}), 400

        try:
            controller.save_credential(api_key)
        except StorageError as e:
            return jsonify({"error": str(e)}), 500
        return jsonify({"message": "API Key가 로컬 스토리지에 저장되었습니다."})

    @app.route("/api/credential", methods=["DELETE"])
    def clear_credential():
        try:
            controller.clear_credential()
        except StorageError as e:
            return jsonify({"error": str(e)}), 500
        return jsonify(state_payload(controller))

    @app.route("/api/upload", methods=["POST"])
    def upload():
        file = request.files.get("image")
        if file is None or file.filename == "":
            return jsonify({"error": "No image file provided"}), 400

        try:
            image_data = prepare_upload(file.read(), file.mimetype)
        except InvalidInput as e:
            return jsonify({"error": str(e), "kind": e.kind}), 400

        try:
            started = controller.submit_image(image_data)
        except CredentialMissing as e:
            return jsonify({"error": str(e), "needsCredential": True}), 401

        if not started:
            if controller.snapshot().is_analyzing:
                message = "이미 분석 중입니다."
            else:
                message = "새 사진을 분석하려면 먼저 처음으로 돌아가세요."
            return jsonify({"error": message, "state": state_payload(controller)}), 409
        return jsonify(state_payload(controller))

    @app.route("/api/generate", methods=["POST"])
    def generate():
        if not controller.request_generation():
            return jsonify({"error": "지금은 이미지를 생성할 수 없습니다.", "state": state_payload(controller)}), 409
        return jsonify(state_payload(controller))

    @app.route("/api/reset", methods=["POST"])
    def reset():
        controller.reset()
        return jsonify(state_payload(controller))

    @app.route("/api/error/dismiss", methods=["POST"])
    def dismiss_error():
        controller.dismiss_error()
        return jsonify(state_payload(controller))

    @app.route("/api/report.pdf")
    def report_pdf():
        state = controller.snapshot()
        if state.analysis_result is None or not state.original_image:
            return jsonify({"error": "분석 결과가 없습니다."}), 409

        try:
            pdf = build_report_pdf(state.analysis_result, state.original_image)
        except Exception as e:
            logger.exception("PDF generation failed")
            return jsonify({"error": f"PDF 생성 중 오류가 발생했습니다. ({e})"}), 500

        return send_file(
            io.BytesIO(pdf),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=REPORT_FILENAME,
        )

    return app


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_app().run(host=HOST, port=PORT, threaded=True)


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="ko">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>MirrorAI</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #0f0f0f;
    color: #e0e0e0;
    min-height: 100vh;
  }

  header {
    padding: 16px 24px;
    border-bottom: 1px solid #1e1e1e;
    display: flex;
    align-items: center;
    gap: 10px;
  }
  header h1 { font-size: 1.05rem; font-weight: 600; color: #fff; }
  header h1 span { color: #60a5fa; }
  header .spacer { flex: 1; }

  main { max-width: 1100px; margin: 0 auto; padding: 32px 24px; }
  .hidden { display: none !important; }

  button {
    background: #3b82f6;
    color: #fff;
    border: none;
    border-radius: 8px;
    padding: 8px 20px;
    font-size: 0.82rem;
    font-weight: 500;
    cursor: pointer;
    transition: background 0.2s, opacity 0.2s;
  }
  button:hover { background: #2563eb; }
  button:disabled { opacity: 0.5; cursor: not-allowed; }
  button.secondary { background: #232323; color: #aaa; border: 1px solid #333; }
  button.secondary:hover { background: #2e2e2e; color: #e0e0e0; }

  .card {
    background: #1a1a1a;
    border: 1px solid #2a2a2a;
    border-radius: 12px;
    padding: 24px;
  }

  .error-banner {
    margin-bottom: 20px;
    padding: 12px 16px;
    border: 1px solid #ef4444;
    background: #1a1111;
    color: #fca5a5;
    border-radius: 10px;
    display: flex;
    justify-content: space-between;
    align-items: center;
  }

  .dropzone {
    border: 2px dashed #333;
    border-radius: 12px;
    padding: 60px 20px;
    text-align: center;
    color: #888;
    cursor: pointer;
    transition: border-color 0.2s;
  }
  .dropzone:hover, .dropzone.over { border-color: #3b82f6; color: #e0e0e0; }

  .split { display: flex; gap: 32px; flex-wrap: wrap; }
  .split > * { flex: 1; min-width: 320px; }

  .photo { position: relative; border-radius: 12px; overflow: hidden; background: #000; }
  .photo img { width: 100%; display: block; }
  .mesh {
    position: absolute;
    border: 1px solid rgba(96, 165, 250, 0.5);
    border-radius: 50%;
    box-shadow: inset 0 0 20px rgba(0, 255, 255, 0.2);
  }
  .mesh::before {
    content: '';
    position: absolute; left: 50%; top: 0; bottom: 0;
    border-left: 1px dashed red;
  }
  .mesh::after {
    content: '';
    position: absolute; top: 50%; left: 0; right: 0;
    border-top: 1px dashed yellow;
  }

  .score { font-size: 2rem; font-weight: 700; color: #60a5fa; }
  .label { font-size: 0.75rem; color: #888; text-transform: uppercase; letter-spacing: 0.5px; }
  .condition { padding: 12px 0; border-bottom: 1px solid #2a2a2a; }
  .condition:last-child { border-bottom: none; }
  .badge {
    font-size: 0.68rem; padding: 2px 8px; border-radius: 4px; margin-left: 6px;
    background: #1e2a3a; color: #60a5fa;
  }
  .actions { display: flex; gap: 10px; margin-top: 20px; }

  .compare { position: relative; max-width: 560px; margin: 0 auto; border-radius: 12px; overflow: hidden; }
  .compare img { width: 100%; display: block; }
  .compare .after { position: absolute; inset: 0; overflow: hidden; }
  .compare .after img { width: auto; height: 100%; max-width: none; }
  .compare input { position: absolute; inset: 0; width: 100%; height: 100%; opacity: 0; cursor: ew-resize; }
  .compare .handle { position: absolute; top: 0; bottom: 0; width: 2px; background: #fff; pointer-events: none; }

  .overlay {
    position: fixed; inset: 0; background: rgba(0,0,0,0.75);
    display: flex; align-items: center; justify-content: center; z-index: 100;
  }
  .loading { display: flex; align-items: center; gap: 10px; color: #ccc; }
  .spinner {
    width: 18px; height: 18px;
    border: 2px solid #333;
    border-top-color: #3b82f6;
    border-radius: 50%;
    animation: spin 0.8s linear infinite;
  }
  @keyframes spin { to { transform: rotate(360deg); } }

  .modal { width: 100%; max-width: 440px; }
  .modal input {
    width: 100%; margin: 12px 0;
    background: #111; color: #e0e0e0;
    border: 1px solid #2a2a2a; border-radius: 8px;
    padding: 10px 12px; outline: none;
  }
  .modal input:focus { border-color: #3b82f6; }
  .status { font-size: 0.8rem; min-height: 1.2em; color: #888; }
  .status.ok { color: #4ade80; }
  .status.err { color: #fca5a5; }
  .note { font-size: 0.72rem; color: #666; margin-top: 12px; }
</style>
</head>
<body>

<header>
  <h1>Mirror<span>AI</span></h1>
  <div class="spacer"></div>
  <button class="secondary" onclick="openSettings()">API Key 설정</button>
</header>

<main>
  <div id="errorBanner" class="error-banner hidden">
    <span id="errorText"></span>
    <button class="secondary" onclick="post('/api/error/dismiss')">닫기</button>
  </div>

  <!-- Landing, no key -->
  <section id="landing" class="card hidden" style="max-width:440px;margin:40px auto;text-align:center">
    <h2 style="margin-bottom:8px">MirrorAI 시작하기</h2>
    <p style="color:#888;margin-bottom:20px">고품질 얼굴 분석 서비스를 이용하려면 Google Gemini API 키가 필요합니다.</p>
    <button onclick="openSettings()">API Key 설정하기</button>
    <p class="note">* 키는 인코딩되어 이 컴퓨터에만 저장됩니다. 암호화는 아닙니다.</p>
  </section>

  <!-- Step 1 -->
  <section id="stepUpload" class="card hidden">
    <div id="dropzone" class="dropzone" onclick="fileInput.click()">
      얼굴 사진을 끌어다 놓거나 클릭해서 선택하세요.<br>
      <span style="font-size:0.75rem">JPG / PNG, 10MB 이하. 자동으로 1:1 비율로 잘립니다.</span>
    </div>
    <input id="fileInput" type="file" accept="image/*" class="hidden">
  </section>

  <!-- Step 2 -->
  <section id="stepAnalysis" class="split hidden">
    <div>
      <div class="label" style="margin-bottom:8px">얼굴 비대칭 분석 (Before)</div>
      <div class="photo">
        <img id="analysisImage" alt="Face Analysis">
        <div id="mesh" class="mesh"></div>
      </div>
      <p id="tiltText" style="margin-top:12px;color:#ccc"></p>
    </div>
    <div class="card">
      <div style="display:flex;gap:32px;margin-bottom:16px">
        <div><div class="label">종합 점수</div><div id="overallScore" class="score"></div></div>
        <div><div class="label">대칭 점수</div><div id="asymmetryScore" class="score"></div></div>
      </div>
      <p id="asymmetryDescription" style="color:#aaa;margin-bottom:16px"></p>
      <div class="label">피부 상태 진단</div>
      <div id="conditions"></div>
      <div class="actions">
        <button id="generateBtn" onclick="generate()">개선된 모습 생성하기</button>
        <a href="/api/report.pdf"><button class="secondary">PDF 리포트 다운로드</button></a>
        <button class="secondary" onclick="post('/api/reset')">다시 시작</button>
      </div>
    </div>
  </section>

  <!-- Step 3 -->
  <section id="stepResult" class="hidden">
    <div class="compare" id="compare">
      <img id="resultBefore" alt="Before">
      <div class="after" id="afterWrap"><img id="resultAfter" alt="After"></div>
      <div class="handle" id="handle"></div>
      <input type="range" min="0" max="100" value="50" id="slider">
    </div>
    <div class="actions" style="justify-content:center">
      <a id="downloadAfter" download="MirrorAI_After.png"><button class="secondary">이미지 저장</button></a>
      <button onclick="post('/api/reset')">처음으로</button>
    </div>
  </section>
</main>

<div id="loading" class="overlay hidden">
  <div class="loading"><div class="spinner"></div><span id="loadingText"></span></div>
</div>

<div id="settings" class="overlay hidden">
  <div class="card modal">
    <h3>API Key 관리</h3>
    <p class="note">Google Gemini API Key를 입력하세요. 키는 base64로 인코딩되어 로컬에만 저장됩니다.</p>
    <input id="keyInput" type="password" placeholder="AIzaSy...">
    <div id="keyStatus" class="status"></div>
    <div class="actions">
      <button class="secondary" id="testBtn" onclick="testKey()">연결 테스트</button>
      <button id="saveBtn" onclick="saveKey()">저장 및 사용</button>
      <button class="secondary" onclick="closeSettings()">닫기</button>
    </div>
    <p class="note"><a href="https://aistudio.google.com/app/apikey" target="_blank" rel="noreferrer" style="color:#60a5fa">Google AI Studio에서 API 키 발급받기</a></p>
  </div>
</div>

<script>
  const $ = id => document.getElementById(id);
  const fileInput = $('fileInput');
  let state = null;

  function show(id, visible) { $(id).classList.toggle('hidden', !visible); }

  function showLoading(text) {
    $('loadingText').textContent = text;
    show('loading', true);
  }

  async function post(url, body) {
    const opts = { method: 'POST' };
    if (body !== undefined) {
      opts.headers = { 'Content-Type': 'application/json' };
      opts.body = JSON.stringify(body);
    }
    const res = await fetch(url, opts);
    const data = await res.json();
    if (data.step) render(data);
    else if (data.state) render(data.state);
    return { res, data };
  }

  function render(s) {
    state = s;
    show('loading', s.isAnalyzing || s.isGenerating);
    show('errorBanner', !!s.error);
    $('errorText').textContent = s.error || '';

    show('landing', !s.hasCredential);
    show('stepUpload', s.hasCredential && s.step === 'UPLOAD');
    show('stepAnalysis', s.hasCredential && s.step === 'ANALYSIS' && !!s.originalImage);
    show('stepResult', s.hasCredential && s.step === 'RESULT' && !!s.generatedImage);

    if (s.step === 'ANALYSIS' && s.analysisResult) renderAnalysis(s);
    if (s.step === 'RESULT' && s.generatedImage) renderResult(s);
  }

  function renderAnalysis(s) {
    const a = s.analysisResult, v = s.view;
    $('analysisImage').src = s.originalImage;
    const box = v.faceBox, mesh = $('mesh');
    mesh.style.top = (box.ymin / 10) + '%';
    mesh.style.left = (box.xmin / 10) + '%';
    mesh.style.width = ((box.xmax - box.xmin) / 10) + '%';
    mesh.style.height = ((box.ymax - box.ymin) / 10) + '%';
    mesh.style.transform = 'rotate(' + v.visualTilt + 'deg)';

    $('tiltText').textContent = v.tiltDescription;
    $('overallScore').textContent = a.overallScore;
    $('asymmetryScore').textContent = a.asymmetryScore;
    $('asymmetryDescription').textContent = a.asymmetryDescription;

    const list = $('conditions');
    list.innerHTML = '';
    a.skinConditions.forEach((c, i) => {
      const row = document.createElement('div');
      row.className = 'condition';
      const title = document.createElement('strong');
      title.textContent = c.condition;
      const badge = document.createElement('span');
      badge.className = 'badge';
      badge.textContent = v.severities[i];
      const desc = document.createElement('p');
      desc.style.color = '#aaa';
      desc.textContent = c.description;
      row.append(title, badge, desc);
      list.appendChild(row);
    });
    $('generateBtn').disabled = s.isGenerating;
  }

  function renderResult(s) {
    $('resultBefore').src = s.originalImage;
    $('resultAfter').src = s.generatedImage;
    $('downloadAfter').href = s.generatedImage;
    setSlider($('slider').value);
  }

  function setSlider(pct) {
    const wrap = $('afterWrap');
    wrap.style.clipPath = 'inset(0 0 0 ' + pct + '%)';
    $('resultAfter').style.width = $('compare').clientWidth + 'px';
    $('handle').style.left = pct + '%';
  }
  $('slider').addEventListener('input', e => setSlider(e.target.value));

  async function uploadFile(file) {
    if (!file) return;
    if (!file.type.startsWith('image/')) { alert('이미지 파일만 업로드해주세요.'); return; }
    const form = new FormData();
    form.append('image', file);
    showLoading('얼굴 구조 및 피부 상태 분석 중...');
    try {
      const res = await fetch('/api/upload', { method: 'POST', body: form });
      const data = await res.json();
      if (res.status === 401 && data.needsCredential) { show('loading', false); openSettings(); return; }
      if (!res.ok && !data.state) { show('loading', false); alert(data.error || 'HTTP ' + res.status); return; }
      render(data.state || data);
    } catch (e) {
      show('loading', false);
      alert(e.message);
    } finally {
      fileInput.value = '';
    }
  }

  fileInput.addEventListener('change', e => uploadFile(e.target.files[0]));
  const dz = $('dropzone');
  dz.addEventListener('dragover', e => { e.preventDefault(); dz.classList.add('over'); });
  dz.addEventListener('dragleave', () => dz.classList.remove('over'));
  dz.addEventListener('drop', e => {
    e.preventDefault();
    dz.classList.remove('over');
    uploadFile(e.dataTransfer.files[0]);
  });

  async function generate() {
    if (!state || state.isGenerating) return;
    $('generateBtn').disabled = true;
    showLoading('개선된 모습을 생성하는 중...');
    await post('/api/generate');
  }

  async function openSettings() {
    const res = await fetch('/api/credential');
    const data = await res.json();
    $('keyInput').value = '';
    $('keyInput').placeholder = data.masked ? '저장된 키: ' + data.masked : 'AIzaSy...';
    setKeyStatus('', '');
    show('settings', true);
  }

  function closeSettings() { show('settings', false); }

  function setKeyStatus(text, cls) {
    const el = $('keyStatus');
    el.textContent = text;
    el.className = 'status ' + cls;
  }

  async function testKey() {
    const apiKey = $('keyInput').value.trim();
    if (!apiKey) { setKeyStatus('API Key를 입력해주세요.', 'err'); return; }
    $('testBtn').disabled = $('saveBtn').disabled = true;
    setKeyStatus('연결 테스트 중...', '');
    try {
      const res = await fetch('/api/credential/test', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ apiKey }),
      });
      const data = await res.json();
      setKeyStatus(data.message, data.ok ? 'ok' : 'err');
    } catch (e) {
      setKeyStatus('오류 발생: ' + e.message, 'err');
    } finally {
      $('testBtn').disabled = $('saveBtn').disabled = false;
    }
  }

  async function saveKey() {
    const apiKey = $('keyInput').value.trim();
    if (!apiKey) { setKeyStatus('저장할 API Key가 없습니다.', 'err'); return; }
    const res = await fetch('/api/credential', {
      method: 'POST',
      headers: { 'Content-Type': 'application/json' },
      body: JSON.stringify({ apiKey }),
    });
    const data = await res.json();
    if (!res.ok) { setKeyStatus(data.error, 'err'); return; }
    closeSettings();
    refresh();
  }

  async function refresh() {
    const res = await fetch('/api/state');
    render(await res.json());
  }

  refresh();
</script>
</body>
</html>
"""

if __name__ == "__main__":
    main()
